import sys
import os

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from config.settings import STORE_PATH
from core.ingest import reprocess_all
from data.segment_store import JsonFileSegmentStore


def main():
    path = sys.argv[1] if len(sys.argv) > 1 else STORE_PATH
    print(f"--- Reprocessing all series in {path} ---")
    store = JsonFileSegmentStore(path)

    counts = reprocess_all(store)
    for series_id, n in counts.items():
        print(f"{series_id}: {n} segments")

    print(f"\nSeries: {len(counts)}")
    print(f"Segments: {sum(counts.values())}")


if __name__ == "__main__":
    main()
