from __future__ import annotations

import argparse


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="screenshot-search",
        description="Analyze a folder of screenshots with Gemini and rank them for natural-language queries",
    )

    p.add_argument("--dir", required=True, help="Folder of screenshots to analyze")
    p.add_argument("--recursive", action="store_true", help="Descend into subfolders")
    p.add_argument(
        "--query",
        action="append",
        default=[],
        help="Query to run after analysis (repeatable)",
    )
    p.add_argument(
        "--batch-size",
        type=int,
        default=0,
        help="Override SCREENSHOT_UPLOAD_BATCH_SIZE",
    )
    p.add_argument(
        "--search-batch-size",
        type=int,
        default=0,
        help="Override SCREENSHOT_SEARCH_BATCH_SIZE",
    )
    p.add_argument("--limit", type=int, default=10, help="Max results printed per query")
    p.add_argument("--log-level", default="INFO", help="Python logging level (INFO, DEBUG, ...)")
    return p
