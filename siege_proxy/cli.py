from __future__ import annotations

import argparse
import importlib.util
import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import List, Optional

from .config import CONFIG_ENV_VAR, SiegeConfig
from .errors import ConfigError
from .logs import setup_logging

logger = logging.getLogger(__name__)


def addon_script_path() -> Path:
    spec = importlib.util.find_spec("siege_addon")
    if spec is None or spec.origin is None:
        raise ConfigError("siege_addon module not found, is siege-proxy installed?")
    return Path(spec.origin)


def mitmdump_command(config: SiegeConfig, addon_path: Path, mitmdump: str = "mitmdump") -> List[str]:
    return [
        mitmdump,
        "-q",
        "--listen-host", config.listen_host,
        "-p", str(config.listen_port),
        "--mode", f"reverse:{config.node_addr}",
        "-s", str(addon_path),
        "--set", "connection_strategy=lazy",
        "--set", "http2=false",
    ]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="siege",
        description="JSON-RPC proxy that checks test_importRawBlock payloads with cannon.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", type=Path, help="YAML file with default settings.")
    parser.add_argument(
        "--node.addr", dest="node_addr", help="http address of surrounded node (default: http://127.0.0.1:8545)"
    )
    parser.add_argument(
        "--siege.addr", dest="listen_addr", help="http address of siege (default: http://127.0.0.1:9000)"
    )
    parser.add_argument("--cannon", dest="verifier_path", help="cannon binary path (default: ../cannon)")
    parser.add_argument(
        "--verifier.timeout",
        dest="verifier_timeout",
        type=float,
        help="Kill cannon after this many seconds. Unbounded when unset.",
    )
    parser.add_argument("--log.level", dest="log_level", help="log level (default: info)")
    parser.add_argument("--log.format", dest="log_format", choices=["text", "json"], help="text or json format logging")
    parser.add_argument(
        "--log.color",
        dest="log_color",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="colored terminal output (default: on when stdout is a terminal)",
    )
    parser.add_argument("--mitmdump", default="mitmdump", help="Path to the mitmdump executable.")
    return parser


def resolve_config(args: argparse.Namespace) -> SiegeConfig:
    base = SiegeConfig.from_yaml(args.config) if args.config else SiegeConfig()
    overrides = {
        "node_addr": args.node_addr,
        "listen_addr": args.listen_addr,
        "verifier_path": args.verifier_path,
        "verifier_timeout": args.verifier_timeout,
        "log_level": args.log_level,
        "log_format": args.log_format,
        "log_color": args.log_color,
    }
    if args.log_color is None and not args.config:
        overrides["log_color"] = sys.stdout.isatty()
    return base.merged(overrides)


def run(config: SiegeConfig, mitmdump: str = "mitmdump") -> int:
    env = os.environ.copy()
    env[CONFIG_ENV_VAR] = config.to_json()
    cmd = mitmdump_command(config, addon_script_path(), mitmdump)
    logger.info("starting siege", extra={"listen": config.listen_addr, "node": config.node_addr})
    logger.debug("mitmdump command: %s", " ".join(cmd))
    try:
        proc = subprocess.Popen(cmd, env=env)
    except OSError as exc:
        logger.error("http server stopped", extra={"err": str(exc)})
        return 1

    try:
        return proc.wait()
    except KeyboardInterrupt:
        return 0
    finally:
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=10)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = resolve_config(args)
    except ConfigError as exc:
        parser.error(str(exc))
    setup_logging(config.log_level, config.log_format, config.log_color)
    try:
        return run(config, args.mitmdump)
    except ConfigError as exc:
        logger.error("http server stopped", extra={"err": str(exc)})
        return 2


if __name__ == "__main__":
    sys.exit(main())
