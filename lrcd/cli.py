from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path

import tomlkit

from .config import RelayRuntimeConfig, apply_config_data, load_toml, validate_config
from .logging_config import configure_logging
from .paths import default_config_path, ensure_private_dir
from .service import RelayService
from .util import expand_path


def _default_config_document(cfg: RelayRuntimeConfig) -> tomlkit.TOMLDocument:
    doc = tomlkit.document()
    doc.add(tomlkit.comment("lrcd configuration (TOML)"))
    doc.add(tomlkit.comment(""))
    doc.add(tomlkit.comment("This file was created on first run. Command line flags override it."))
    doc.add(tomlkit.nl())

    relay = tomlkit.table()
    relay.add(tomlkit.comment("Listening address and TCP port."))
    relay.add("host", cfg.host)
    relay.add("port", cfg.port)
    relay.add("backlog", cfg.backlog)
    relay.add(tomlkit.nl())
    relay.add(tomlkit.comment("Bytes requested per socket read."))
    relay.add("read_chunk_bytes", cfg.read_chunk_bytes)
    relay.add(tomlkit.nl())
    relay.add(tomlkit.comment("Limits (0 disables). A client sending a longer line, or falling"))
    relay.add(tomlkit.comment("behind by more than max_outbound_bytes of output, is disconnected."))
    relay.add("max_line_bytes", cfg.max_line_bytes)
    relay.add("max_outbound_bytes", cfg.max_outbound_bytes)
    relay.add(tomlkit.nl())
    relay.add(tomlkit.comment("Name policy (0 disables length limits). Names never contain spaces."))
    relay.add("nick_max_chars", cfg.nick_max_chars)
    relay.add("max_room_name_len", cfg.max_room_name_len)
    doc.add("relay", relay)

    log_table = tomlkit.table()
    log_table.add(tomlkit.comment("Log level, console (stderr) output and optional log file."))
    log_table.add("level", cfg.log_level)
    log_table.add("console", cfg.log_console)
    log_table.add("file", cfg.log_file or "")
    log_table.add("format", cfg.log_format)
    log_table.add("datefmt", cfg.log_datefmt or "")
    doc.add("logging", log_table)

    return doc


def _write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    content = tomlkit.dumps(_default_config_document(RelayRuntimeConfig()))
    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="lrcd", description="Run a line relay chat daemon")

    p.add_argument(
        "port",
        nargs="?",
        type=int,
        default=None,
        help="TCP port to listen on (default comes from config)",
    )
    p.add_argument("--host", default=None, help="Address to bind (default: 0.0.0.0)")
    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument(
        "--no-config",
        action="store_true",
        help="Ignore the config file and use built-in defaults plus flags",
    )
    p.add_argument("--backlog", type=int, default=None, help="Listen backlog")
    p.add_argument(
        "--max-line-bytes",
        type=int,
        default=None,
        help="Disconnect clients sending longer lines (0 disables)",
    )
    p.add_argument(
        "--max-outbound-bytes",
        type=int,
        default=None,
        help="Disconnect clients with more pending output than this (0 disables)",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    cfg = RelayRuntimeConfig()
    created_config = False

    if not args.no_config:
        config_path = expand_path(str(args.config))
        if not os.path.exists(config_path):
            _write_default_config(config_path)
            created_config = True
        try:
            cfg = apply_config_data(cfg, load_toml(config_path))
        except (OSError, ValueError) as e:
            print(f"lrcd: cannot load config {config_path}: {e}", file=sys.stderr)
            raise SystemExit(1) from e
        cfg = replace(cfg, config_path=config_path)

    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.backlog is not None:
        cfg = replace(cfg, backlog=int(args.backlog))
    if args.max_line_bytes is not None:
        cfg = replace(cfg, max_line_bytes=int(args.max_line_bytes))
    if args.max_outbound_bytes is not None:
        cfg = replace(cfg, max_outbound_bytes=int(args.max_outbound_bytes))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)
    log = logging.getLogger("lrcd")

    if created_config:
        log.info("Created default config at %s", cfg.config_path)

    try:
        validate_config(cfg)
    except ValueError as e:
        log.error("Invalid configuration: %s", e)
        raise SystemExit(1) from e

    svc = RelayService(cfg)
    try:
        svc.start()
    except OSError as e:
        log.error("Cannot listen on %s:%s: %s", cfg.host, cfg.port, e)
        raise SystemExit(1) from e

    svc.run_forever()


if __name__ == "__main__":
    main()
