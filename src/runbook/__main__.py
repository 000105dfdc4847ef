"""Entry point for Runbook."""

import argparse
import logging
import sys
from pathlib import Path

from .config import Config
from .session import Session


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="runbook",
        description="Browse a markdown document and run its code blocks.",
    )
    parser.add_argument("document", help="Markdown document to open")
    parser.add_argument(
        "blocks",
        nargs="*",
        help="Blocks to run in order, then exit ('.' stays in the menu)",
    )
    parser.add_argument("--config", type=Path, help="Config file (default: ~/.config/runbook/config.toml)")
    parser.add_argument("--debug", action="store_true", help="Log state transitions")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for Runbook."""
    args = build_parser().parse_args(argv)
    try:
        # Load configuration
        config = Config.load(args.config)

        level = logging.DEBUG if args.debug else getattr(logging, config.log_level.upper(), logging.WARNING)
        logging.basicConfig(level=level, format="%(asctime)s %(name)s %(levelname)s %(message)s")

        # Run the session
        Session(config).run(args.document, args.blocks)

        return 0
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
