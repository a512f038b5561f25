"""Run one collection against a source and print the result as JSON.

Usage:
    python -m scripts.sync_once --options '{"source": "hackernews", "search_query": "rust"}'
    python -m scripts.sync_once --options-file reddit.json --checkpoint state.json --save-checkpoint

The checkpoint file (if given) is read before the run; with
--save-checkpoint the new checkpoint is written back to it afterwards.
Credentials come from the environment / .env (GITHUB_TOKEN, REDDIT_ACCESS_TOKEN).
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

sys.path.insert(0, ".")

from crawlsync.config import configure_logging, settings
from crawlsync.schemas.checkpoints import dump_checkpoint, load_checkpoint
from crawlsync.schemas.options import parse_options
from crawlsync.services.collector.errors import CollectorError
from crawlsync.services.collector.runner import run


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run one incremental collection")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--options", help="source options as a JSON object")
    group.add_argument("--options-file", type=Path, help="path to a JSON options file")
    parser.add_argument("--checkpoint", type=Path, help="checkpoint JSON file to resume from")
    parser.add_argument(
        "--save-checkpoint",
        action="store_true",
        help="write the new checkpoint back to --checkpoint",
    )
    parser.add_argument("--summary", action="store_true", help="print metadata only, not contents")
    args = parser.parse_args(argv)
    if args.save_checkpoint and not args.checkpoint:
        parser.error("--save-checkpoint requires --checkpoint")
    return args


async def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging()

    raw_options = json.loads(args.options) if args.options else json.loads(args.options_file.read_text())
    checkpoint = None
    if args.checkpoint and args.checkpoint.exists():
        checkpoint = load_checkpoint(json.loads(args.checkpoint.read_text()))

    try:
        options = parse_options(raw_options)
        result = await run(options, checkpoint, settings.source_secrets())
    except CollectorError as e:
        print(json.dumps({"error": e.kind, "message": str(e)}), file=sys.stderr)
        return 1

    if args.save_checkpoint:
        args.checkpoint.write_text(json.dumps(dump_checkpoint(result.checkpoint), indent=2))

    output = result.to_dict()
    if args.summary:
        output = {"metadata": output["metadata"], "checkpoint": output["checkpoint"]}
    print(json.dumps(output, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
