#!/usr/bin/env python3
"""
Manual ticket scan for TicketScan.

Runs the extraction pipeline on one image file and prints the canonical
ticket string.

Usage:
    python scripts/scan_ticket.py ticket.jpg
    python scripts/scan_ticket.py ticket.jpg --game us_powerball --local-only
    python scripts/scan_ticket.py ticket.jpg --row-count
"""
import argparse
import os
import sys

from dotenv import load_dotenv
from loguru import logger

load_dotenv()


def ensure_project_root_on_path() -> None:
    """Ensure repository root is on sys.path when running from subdirs."""
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Extract lottery numbers from a ticket image")
    parser.add_argument("image", help="Path to the ticket image")
    parser.add_argument("--game", dest="game_id", default=None,
                        help="Game id to pin (default: inferred from the numbers)")
    parser.add_argument("--row-count", action="store_true",
                        help="Ask the cloud service for the row count first, then extract with that hint")
    parser.add_argument("--local-only", action="store_true",
                        help="Skip the cloud tiers")
    parser.add_argument("--lines", action="store_true",
                        help="Use whole-line OCR instead of the per-cell grid for the local tier")
    parser.add_argument("--config", dest="config_path", default=None,
                        help="Path to config.ini")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    ensure_project_root_on_path()

    from PIL import Image, ImageOps

    from ticketscan.config import load_settings
    from ticketscan.errors import ExtractionExhausted, TicketScanError
    from ticketscan.orchestrator import LocalStrategy, create_orchestrator

    try:
        settings = load_settings(args.config_path)
        orchestrator = create_orchestrator(settings, enable_cloud=not args.local_only)

        with Image.open(args.image) as raw:
            image = ImageOps.exif_transpose(raw).convert("RGB")
        logger.info(f"Scanning {args.image} ({image.width}x{image.height})")

        if args.row_count:
            result = orchestrator.extract_with_row_count(image, game_id=args.game_id)
        else:
            strategy = LocalStrategy.LINES if args.lines else LocalStrategy.GRID
            result = orchestrator.extract(image, game_id=args.game_id, local_strategy=strategy)

        logger.info(f"Extracted {len(result.rows)} row(s) via {result.tier.value}, game {result.game_id}")
        print(result.canonical)
        return 0

    except ExtractionExhausted as e:
        logger.error(f"Extraction failed: {e}")
        for row in e.partial_rows:
            logger.info(f"Partial row: {row.numbers} + {row.special}")
        return 1
    except TicketScanError as e:
        logger.error(f"Scan failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Scan interrupted by user")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
