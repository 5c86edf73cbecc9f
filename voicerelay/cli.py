"""VoiceRelay CLI entry point.

Usage:
    voicerelay run --config bridge.yaml
    voicerelay init [--output bridge.yaml]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger


def cmd_run(args: argparse.Namespace) -> None:
    """Run the VoiceRelay server."""
    config_path = args.config

    if not Path(config_path).exists():
        logger.error(f"Config file not found: {config_path}")
        sys.exit(1)

    from voicerelay.config import load_config

    config = load_config(config_path)

    # Configure logging
    logger.remove()
    logger.add(sys.stderr, level=config.logging.level)

    logger.info(f"VoiceRelay starting with config: {config_path}")
    logger.info(
        f"Listening on: {config.telephony.listen_host}:{config.telephony.listen_port}"
        f"{config.telephony.listen_path}"
    )
    logger.info(f"Agent URL: {config.agent.url}")

    from voicerelay.server import run_server

    try:
        run_server(config, host=args.host, port=args.port)
    except ValueError as e:
        logger.error(f"Failed to start VoiceRelay: {e}")
        sys.exit(1)


def cmd_init(args: argparse.Namespace) -> None:
    """Generate a starter configuration file."""
    output = Path(args.output)

    if output.exists() and not args.force:
        logger.error(f"File already exists: {output}. Use --force to overwrite.")
        sys.exit(1)

    from voicerelay.config import DEFAULT_CONFIG_YAML

    output.write_text(DEFAULT_CONFIG_YAML)
    print(f"Configuration written to: {output}")
    print(f"\nEdit the file and run: voicerelay run --config {output}")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="voicerelay",
        description="VoiceRelay - Twilio Media Streams to speech agent relay",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # `voicerelay run`
    run_parser = subparsers.add_parser("run", help="Run the VoiceRelay server")
    run_parser.add_argument(
        "--config", "-c",
        default="bridge.yaml",
        help="Path to the bridge YAML config file (default: bridge.yaml)",
    )
    run_parser.add_argument("--host", default=None, help="Override the listen host")
    run_parser.add_argument("--port", type=int, default=None, help="Override the listen port")

    # `voicerelay init`
    init_parser = subparsers.add_parser("init", help="Generate a starter config file")
    init_parser.add_argument(
        "--output", "-o",
        default="bridge.yaml",
        help="Output file path (default: bridge.yaml)",
    )
    init_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite existing file",
    )

    args = parser.parse_args(argv)

    if args.command == "run":
        cmd_run(args)
    elif args.command == "init":
        cmd_init(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
