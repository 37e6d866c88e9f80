from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import RelayRuntimeConfig
from .util import expand_path

_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _parse_level(value: Any, default: int) -> int:
    """Accept a level name ("debug", "WARN") or a number; fall back to `default`."""
    if value is None:
        return default
    if isinstance(value, int):
        return value

    text = str(value).strip().upper()
    if not text:
        return default
    if text == "WARN":
        text = "WARNING"

    levels = logging.getLevelNamesMapping()
    if text in levels:
        return levels[text]

    try:
        return int(text)
    except ValueError:
        return default


def _clean_optional(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value)
    return s if s.strip() else None


def _open_log_file(path: str) -> logging.Handler:
    p = Path(expand_path(path))
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, encoding="utf-8")
    try:
        # Chat traffic at DEBUG includes message text.
        os.chmod(p, 0o600)
    except OSError:
        pass
    return handler


def _build_handlers(cfg: RelayRuntimeConfig, override_file: str | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())

    # An explicit empty override disables file logging.
    if override_file is not None:
        log_file = _clean_optional(override_file)
    else:
        log_file = _clean_optional(cfg.log_file)

    if log_file:
        handlers.append(_open_log_file(log_file))
    return handlers


def configure_logging(
    cfg: RelayRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Install root handlers for lrcd according to `cfg` and CLI overrides.

    Safe to call repeatedly; previously installed root handlers are replaced.
    """
    level = _parse_level(override_level or cfg.log_level, logging.INFO)
    handlers = _build_handlers(cfg, override_file)

    formatter = logging.Formatter(
        fmt=_clean_optional(cfg.log_format) or _DEFAULT_FORMAT,
        datefmt=_clean_optional(cfg.log_datefmt),
    )

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    for h in handlers:
        h.setFormatter(formatter)
        root.addHandler(h)

    root.setLevel(level)
    logging.captureWarnings(True)
