from __future__ import annotations

import logging
from typing import Optional

_DEFAULT_FMT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DEFAULT_DATEFMT = "%H:%M:%S"

# Third-party loggers that are far too chatty at INFO/DEBUG.
_NOISY_LOGGERS = ("urllib3.connection", "urllib3.connectionpool")


def configure_logging(level: Optional[int]) -> None:
    """Configure root logging once; later calls only adjust the level."""
    lvl = level if level is not None else logging.WARNING
    root = logging.getLogger()

    if root.handlers:
        root.setLevel(lvl)
    else:
        logging.basicConfig(
            level=lvl,
            format=_DEFAULT_FMT,
            datefmt=_DEFAULT_DATEFMT,
        )

    # Request URLs carry SOQL text and session ids; keep them out of DEBUG output.
    for name in _NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        if noisy.level == logging.NOTSET or noisy.level < logging.WARNING:
            noisy.setLevel(logging.WARNING)
