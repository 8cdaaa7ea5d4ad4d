import os
from pathlib import Path

from sfaccess import env_loader
from sfaccess.env_loader import ENV_FILENAMES, load_env_files


def _record_calls(monkeypatch):
    calls = []

    def fake_load_dotenv(path, override=True):
        calls.append((Path(path), override))
        return True

    monkeypatch.setattr(env_loader, "load_dotenv", fake_load_dotenv)
    return calls


def test_load_env_files_loads_first_existing(tmp_path, monkeypatch):
    """load_env_files should call load_dotenv on the first existing candidate."""
    env1 = tmp_path / ".env"
    env2 = tmp_path / ".dotenv"
    env1.write_text("SF_CLIENT_ID=dummy\n")
    env2.write_text("SHOULD_NOT_BE_USED=1\n")
    calls = _record_calls(monkeypatch)

    loaded = load_env_files(candidates=[env1, env2], quiet=True)

    assert loaded == env1
    # Process environment wins over the file.
    assert calls == [(env1, False)]


def test_load_env_files_no_existing_files(tmp_path, monkeypatch):
    """If no candidate exists, load_dotenv should never be called."""
    calls = _record_calls(monkeypatch)

    assert load_env_files(candidates=[tmp_path / "missing.env"], quiet=True) is None
    assert calls == []


def test_load_env_files_defaults_to_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".sfaccess.env").write_text("SF_AUTH_FLOW=token\n")
    calls = _record_calls(monkeypatch)

    loaded = load_env_files()

    assert ENV_FILENAMES[-1] == ".sfaccess.env"
    assert loaded == tmp_path / ".sfaccess.env"
    assert len(calls) == 1


def test_load_env_files_reads_real_file(tmp_path, monkeypatch):
    # setenv first so monkeypatch restores the variable afterwards.
    monkeypatch.setenv("SF_API_VERSION", "")
    monkeypatch.delenv("SF_API_VERSION")
    monkeypatch.setenv("SF_INSTANCE_URL", "https://already.set")
    env = tmp_path / ".env"
    env.write_text("SF_API_VERSION=v61.0\nSF_INSTANCE_URL=https://from.file\n")

    load_env_files(candidates=[env])

    assert os.environ["SF_API_VERSION"] == "v61.0"
    assert os.environ["SF_INSTANCE_URL"] == "https://already.set"
