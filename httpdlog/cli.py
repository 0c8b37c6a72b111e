from __future__ import annotations

import argparse
import logging
import sys
from typing import Iterable, TextIO

import yaml
from prometheus_client import start_http_server
from pydantic import ValidationError

from .config import Config, load_config
from .errors import ConfigError, InvalidFormatError
from .metrics import PrometheusSink
from .processor import Processor
from .tail import follow, read_lines

logger = logging.getLogger("httpdlog")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="httpdlog", description="Turn httpd access logs into counters.")
    parser.add_argument("-c", "--config", type=str, default=None, help="Path to YAML config file")
    parser.add_argument("--format", type=str, default=None, help="Preset name or mod_log_config format string")
    parser.add_argument("--file", type=str, default=None, help="Access log path or '-' for stdin")
    parser.add_argument("--follow", action="store_true", help="Keep reading appended lines")
    parser.add_argument("--from-start", action="store_true", help="When following, read existing lines first")
    parser.add_argument(
        "--require",
        action="append",
        default=None,
        metavar="NAME",
        help="Required field name (repeatable, replaces the configured set)",
    )
    parser.add_argument("--port", type=int, default=None, help="Serve Prometheus metrics over HTTP on this port")
    parser.add_argument("--addr", type=str, default=None, help="Address the metrics server binds to")
    parser.add_argument("-o", "--output", type=str, default="-", help="Report file path or '-' for stdout")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level")
    return parser


def resolve_config(args: argparse.Namespace) -> Config:
    """Load the config file, if any, and apply command line overrides."""
    cfg = load_config(args.config) if args.config else Config()
    overrides: dict[str, object] = {}
    if args.format is not None:
        overrides["format"] = args.format
    if args.file is not None:
        overrides["file"] = args.file
    if args.follow:
        overrides["follow"] = True
    if args.from_start:
        overrides["from_end"] = False
    if args.port is not None:
        overrides["port"] = args.port
    if args.addr is not None:
        overrides["addr"] = args.addr
    if args.require is not None:
        overrides["required_fields"] = list(args.require)
    if not overrides:
        return cfg
    try:
        return Config.model_validate({**cfg.model_dump(), **overrides})
    except ValidationError as e:
        raise ConfigError(str(e)) from e


def input_lines(cfg: Config) -> Iterable[str]:
    if cfg.follow and cfg.file != "-":
        return follow(cfg.file, poll_interval=cfg.poll_interval, from_end=cfg.from_end)
    return read_lines(cfg.file)


def write_report(processor: Processor, sink: PrometheusSink, dst: TextIO) -> None:
    stats = processor.stats
    report = {
        "counters": sink.snapshot(),
        "lines": {
            "matched": stats.matched,
            "unmatched": stats.unmatched,
            "value_errors": stats.value_errors,
            "errors": stats.errors,
        },
        "uptime_seconds": round(processor.uptime_seconds(), 3),
        "idletime_seconds": round(processor.idle_seconds(), 3),
    }
    yaml.safe_dump(report, dst, sort_keys=False, allow_unicode=True)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    sink = PrometheusSink()
    try:
        cfg = resolve_config(args)
        processor = Processor.from_config(cfg, sink)
    except (ConfigError, InvalidFormatError) as e:
        logger.error("%s", e)
        return 1

    if cfg.port is not None:
        try:
            start_http_server(cfg.port, addr=cfg.addr, registry=sink.registry)
        except OSError as e:
            logger.error("Start metric server failed: %s", e)
            return 1
        logger.info("Serving metrics on %s:%d", cfg.addr, cfg.port)

    logger.info("Reading %s with format %r", cfg.file, cfg.log_format)
    try:
        processor.process_stream(input_lines(cfg))
    except KeyboardInterrupt:
        logger.info("Interrupted, writing report")
    except OSError as e:
        logger.error("Cannot read %s: %s", cfg.file, e)
        return 1

    if args.output == "-":
        dst = sys.stdout
    else:
        dst = open(args.output, "w", encoding="utf-8")
    try:
        write_report(processor, sink, dst)
        return 0
    finally:
        if dst is not sys.stdout:
            dst.close()


if __name__ == "__main__":
    raise SystemExit(main())
