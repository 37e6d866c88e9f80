from __future__ import annotations

import os
from pathlib import Path


def default_lrcd_dir() -> Path:
    override = os.environ.get("LRCD_HOME")
    if override:
        return Path(override)
    return Path.home() / ".lrcd"


def default_config_path() -> Path:
    return default_lrcd_dir() / "lrcd.toml"


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    try:
        # Best-effort tightening; may fail on some filesystems.
        os.chmod(path, 0o700)
    except OSError:
        pass
