#!/usr/bin/env python3
"""
videoscribe — Main entry point.
Prints transcripts for the given videos as JSON, one object per line.
"""

import sys
import os
import json
import argparse
import logging
import shutil
from dataclasses import asdict
from pathlib import Path
from datetime import datetime

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from videoscribe.core.constants import APP_NAME, APP_LOG_DIR, YTDLP_BINARY
from videoscribe.core.config import AppConfig
from videoscribe.core.error_codes import JobError, NoFallbackError
from videoscribe.core.diagnostics import get_diagnostics
from videoscribe.core.url_parse import parse_input_lines

logger = logging.getLogger(APP_NAME)


def setup_logging(verbose: bool = False):
    """Log to <log dir>/videoscribe.log and to stderr."""
    handlers = [logging.StreamHandler(sys.stderr)]
    try:
        APP_LOG_DIR.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(APP_LOG_DIR / "videoscribe.log", encoding="utf-8"))
    except OSError as e:
        print(f"Cannot write logs to {APP_LOG_DIR}: {e}", file=sys.stderr)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
    # urllib3 debug output would include request URLs for every poll
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def check_prerequisites():
    """yt-dlp is needed for both audio and captions; exit if it is missing."""
    found = shutil.which(YTDLP_BINARY)
    if not found:
        logger.error("Missing %s. PATH = %s", YTDLP_BINARY, os.environ.get("PATH", ""))
        print(f"Missing required tool: {YTDLP_BINARY} (install with: pip install yt-dlp)",
              file=sys.stderr)
        sys.exit(1)
    logger.info("yt-dlp found at: %s", found)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Fetch or produce transcripts for online videos.",
    )
    parser.add_argument("videos", nargs="*", metavar="VIDEO",
                        help="video id or watch URL ('-' reads ids from stdin)")
    parser.add_argument("--diagnostics", action="store_true",
                        help="print tool versions and configuration checks")
    parser.add_argument("--check-key", action="store_true",
                        help="with --diagnostics, verify the API key against the provider")
    parser.add_argument("--verify", metavar="VIDEO",
                        help="check a cached transcript's integrity")
    parser.add_argument("--delete", metavar="VIDEO",
                        help="remove a transcript from the cache")
    parser.add_argument("--stats", action="store_true",
                        help="cache totals per source")
    parser.add_argument("--list", action="store_true",
                        help="list cached transcripts, most recently used first")
    parser.add_argument("--page", type=int, default=1)
    parser.add_argument("--limit", type=int, default=20)
    parser.add_argument("--config", metavar="PATH", type=Path,
                        help="config file (default: user app support dir)")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def _emit(payload: dict):
    print(json.dumps(payload, ensure_ascii=False))


def _collect_videos(args) -> list[str]:
    videos = []
    for value in args.videos:
        if value == "-":
            videos.extend(parse_input_lines(sys.stdin.read()))
        else:
            videos.append(value)
    return videos


def run(args) -> int:
    config = AppConfig(config_path=args.config)

    if args.diagnostics:
        print(json.dumps(get_diagnostics(config, verify_key=args.check_key), indent=2))
        return 0

    from videoscribe.core.transcript_service import TranscriptService

    if args.verify or args.delete or args.stats or args.list:
        service = TranscriptService.from_config(config)
        try:
            if args.verify:
                _emit(asdict(service.verify(args.verify)))
            elif args.delete:
                deleted = service.delete_cached(args.delete)
                _emit({"video_id": args.delete, "deleted": deleted})
                if not deleted:
                    return 1
            elif args.stats:
                _emit(asdict(service.stats()))
            else:
                for entry in service.list_cached(page=args.page, limit=args.limit):
                    _emit(entry.as_dict())
        except JobError as e:
            _emit({"error_code": e.code, "error": e.message})
            return 1
        finally:
            service.close()
        return 0

    videos = _collect_videos(args)
    if not videos:
        build_parser().print_usage(sys.stderr)
        return 2

    check_prerequisites()
    service = TranscriptService.from_config(config)
    failures = 0
    try:
        for value in videos:
            try:
                transcript = service.get_transcript(value)
            except JobError as e:
                failures += 1
                logger.error("Failed %s: [%s] %s", value, e.code, e.message)
                payload = {"input": value, "error_code": e.code, "error": e.message}
                if isinstance(e, NoFallbackError) and e.transcript is not None:
                    payload["unvalidated"] = e.transcript.as_dict()
                _emit(payload)
                continue
            _emit(transcript.as_dict())
    finally:
        service.close()
    return 1 if failures else 0


def main():
    args = build_parser().parse_args()
    setup_logging(args.verbose)
    logger.info("%s starting at %s (python %s)", APP_NAME, datetime.now().isoformat(), sys.version.split()[0])
    try:
        sys.exit(run(args))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
