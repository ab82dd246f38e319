import argparse
import sys
from pathlib import Path

from rich.console import Console

from config.settings import STORE_PATH
from core.classifier import classification_summary
from core.ingest import ingest_market_file
from data.segment_store import JsonFileSegmentStore
from models.errors import FormatError
from models.types import EngineConfig, IngestStatus
from ui.console import ConsoleRenderer, generate_segment_table, generate_summary_panel
from utils.logger import setup_logger

console = Console(file=sys.__stdout__)

logger = setup_logger("segmenter", echo_level="WARNING")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Segment SYMBOL_YYYY-MM-DD.txt market-data files into trend segments")
    parser.add_argument("files", nargs="+", help="Tab-separated market-data files")
    parser.add_argument("--store", default=STORE_PATH, help=f"JSON segment store (default: {STORE_PATH})")
    parser.add_argument("--min-length", type=int, default=None, help="Minimum segment length in bars")
    parser.add_argument("--render", action="store_true", help="Print a panel per new segment")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logger.info(f"Starting segmentation of {len(args.files)} file(s) into {args.store}")

    config = EngineConfig() if args.min_length is None else EngineConfig(min_segment_length=args.min_length)
    store = JsonFileSegmentStore(args.store)
    renderer = ConsoleRenderer(console=console) if args.render else None

    failures = 0
    for name in args.files:
        path = Path(name)
        try:
            content = path.read_text(encoding="utf-8")
            result = ingest_market_file(path.name, content, store, config, renderer)
        except (FormatError, OSError) as e:
            failures += 1
            logger.error(f"Ingestion failed for {name}: {e}")
            continue

        color = {
            IngestStatus.SEGMENTED: "green",
            IngestStatus.NO_SEGMENTS: "yellow",
            IngestStatus.ALREADY_SEGMENTED: "cyan",
        }[result.status]
        console.print(f"[{color}]{result.status.value}[/] {result.message}")

    segments = store.load_segments()
    if segments:
        console.print(generate_segment_table(segments))
    console.print(generate_summary_panel(classification_summary(segments)))

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
