# src/sfaccess/env_loader.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

ENV_FILENAMES = (".env", ".dotenv", ".sfaccess.env")


def load_env_files(
    candidates: Optional[Iterable[Path]] = None,
    *,
    quiet: bool = False,
) -> Optional[Path]:
    """Load SF_* settings from the first .env-style file found.

    Looks in the current working directory by default. Variables already set
    in the process environment win over values in the file. Returns the path
    that was loaded, or None.
    """
    if candidates is None:
        cwd = Path.cwd()
        candidates = tuple(cwd / name for name in ENV_FILENAMES)

    for path in candidates:
        if path.exists():
            load_dotenv(path, override=False)
            if not quiet:
                _logger.debug("Loaded environment variables from %s", path)
            return path

    if not quiet:
        _logger.debug("No .env file found in %s", Path.cwd())
    return None
