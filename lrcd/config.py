from __future__ import annotations

from dataclasses import asdict, dataclass, replace

from .constants import (
    DEFAULT_BACKLOG,
    DEFAULT_HOST,
    DEFAULT_PORT,
    MAX_LINE_BYTES,
    MAX_OUTBOUND_BYTES,
    READ_CHUNK_BYTES,
)


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    backlog: int = DEFAULT_BACKLOG
    read_chunk_bytes: int = READ_CHUNK_BYTES
    max_line_bytes: int = MAX_LINE_BYTES  # 0 disables
    max_outbound_bytes: int = MAX_OUTBOUND_BYTES  # 0 disables
    nick_max_chars: int = 0  # 0 disables
    max_room_name_len: int = 0  # 0 disables
    log_level: str = "INFO"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    log_datefmt: str | None = None


_INT_FIELDS = (
    "port",
    "backlog",
    "read_chunk_bytes",
    "max_line_bytes",
    "max_outbound_bytes",
    "nick_max_chars",
    "max_room_name_len",
)


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: RelayRuntimeConfig, data: dict) -> RelayRuntimeConfig:
    """Overlay values from a parsed TOML document onto `base`."""
    relay = data.get("relay") if isinstance(data, dict) else None
    if isinstance(relay, dict):
        data = {**data, **relay}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        if "level" in log_table:
            mapped["log_level"] = log_table.get("level")
        if "console" in log_table:
            mapped["log_console"] = log_table.get("console")
        if "file" in log_table:
            mapped["log_file"] = log_table.get("file")
        if "format" in log_table:
            mapped["log_format"] = log_table.get("format")
        if "datefmt" in log_table:
            mapped["log_datefmt"] = log_table.get("datefmt")
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")

    updates = {k: v for k, v in data.items() if k in allowed}

    for key in _INT_FIELDS:
        if key in updates:
            try:
                updates[key] = int(updates[key])
            except (TypeError, ValueError) as e:
                raise ValueError(f"{key} must be an integer, got {updates[key]!r}") from e

    if "log_console" in updates:
        updates["log_console"] = bool(updates["log_console"])
    if "log_file" in updates and updates["log_file"] == "":
        updates["log_file"] = None
    if "log_datefmt" in updates and updates["log_datefmt"] == "":
        updates["log_datefmt"] = None

    return replace(base, **updates) if updates else base


def validate_config(cfg: RelayRuntimeConfig) -> None:
    if not str(cfg.host).strip():
        raise ValueError("host must not be empty")
    if not 0 <= int(cfg.port) <= 65535:
        raise ValueError(f"port out of range: {cfg.port}")
    if int(cfg.backlog) < 1:
        raise ValueError("backlog must be at least 1")
    if int(cfg.read_chunk_bytes) < 1:
        raise ValueError("read_chunk_bytes must be at least 1")
    for key in ("max_line_bytes", "max_outbound_bytes", "nick_max_chars", "max_room_name_len"):
        if int(getattr(cfg, key)) < 0:
            raise ValueError(f"{key} must not be negative")
