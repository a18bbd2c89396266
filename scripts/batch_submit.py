"""
Batch helper: sends a set of local photos to a running service one at a
time and writes every finished image into an output directory.

Ctrl+C cancels the batch after the image in flight; images already
finished are kept.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
import signal

# Ensure project root is importable when running from scripts/
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from amazon_main_service.config import get_settings
from amazon_main_service.queue_state import ItemStatus
from amazon_main_service.queue_worker import BatchProcessor, ProcessingCallbacks
from amazon_main_service.transform_client import TransformationClient

logger = logging.getLogger("batch_submit")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Process product photos through the Amazon main-image service")
    parser.add_argument("inputs", nargs="+", help="Image files to process, in order")
    parser.add_argument("--output-dir", required=True, help="Directory for the finished JPEGs")
    parser.add_argument("--server-url", default=None, help="Service base URL (defaults to SERVER_URL)")
    parser.add_argument("--timeout", type=float, default=None, help="Per-image timeout in seconds")
    parser.add_argument("--retry-failed", action="store_true", help="Retry each failed image once at the end")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    output_dir = Path(args.output_dir)
    client = TransformationClient(server_url=args.server_url, timeout=args.timeout, settings=settings)
    processor = BatchProcessor(client=client, settings=settings)
    signal.signal(signal.SIGINT, lambda *_: processor.cancel())

    callbacks = ProcessingCallbacks(
        on_item_start=lambda i: logger.info("[%d/%d] %s", i + 1, len(args.inputs), args.inputs[i]),
        on_item_failed=lambda i, err: logger.error("[%d/%d] failed: %s", i + 1, len(args.inputs), err),
        on_progress=lambda done, total: logger.info("progress %d/%d", done, total),
    )
    success, failed = processor.process_queue(args.inputs, callbacks)

    if args.retry_failed:
        for item in processor.snapshot().items:
            if item.status is ItemStatus.FAILED:
                processor.retry_item(item.id)

    snapshot = processor.snapshot()
    for index, item in enumerate(snapshot.items):
        if item.status is ItemStatus.COMPLETED:
            path = item.result.save(output_dir / f"amazon_main_{index:03d}_{Path(item.source_ref).stem}.jpg")
            logger.info("saved %s", path)

    logger.info(
        "done: %d completed, %d failed, %d not processed (first pass: %d ok, %d failed)",
        snapshot.completed_count,
        snapshot.failed_count,
        snapshot.pending_count,
        success,
        failed,
    )
    return 0 if snapshot.failed_count == 0 and snapshot.pending_count == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
