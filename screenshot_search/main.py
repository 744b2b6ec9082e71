from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path

from screenshot_search.cli import build_parser
from screenshot_search.config import IMAGE_EXTENSIONS
from screenshot_search.gemini import GeminiRemoteModel
from screenshot_search.logging_config import setup_logging
from screenshot_search.pipeline.config import PipelineConfig
from screenshot_search.pipeline.runner import PipelineRunner
from screenshot_search.pipeline.types import ImageRecord
from screenshot_search.session import Session
from screenshot_search.state import BatchCompleted, Event, SessionState

logger = logging.getLogger("screenshot_search")


def discover_images(root: Path, *, recursive: bool = False) -> list[ImageRecord]:
    """Build pending records for every image file under ``root``, sorted by path."""
    pattern = "**/*" if recursive else "*"
    paths = sorted(
        p for p in root.glob(pattern) if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
    )
    return [
        ImageRecord.new(
            source=p,
            filename=str(p.relative_to(root)),
            mime_type=mimetypes.guess_type(p.name)[0] or "image/png",
        )
        for p in paths
    ]


def _log_progress(state: SessionState, event: Event) -> None:
    if isinstance(event, BatchCompleted) and state.upload_progress is not None:
        p = state.upload_progress
        logger.info("%s: %d/%d (%d%%)", p.current_label, p.completed, p.total, p.percentage)


async def _amain() -> int:
    parser = build_parser()
    args = parser.parse_args()

    setup_logging(level=args.log_level.upper())

    cfg = PipelineConfig.from_env()
    cfg.validate()

    root = Path(args.dir)
    if not root.is_dir():
        logger.error("Not a directory: %s", root)
        return 1

    images = discover_images(root, recursive=bool(args.recursive))
    if not images:
        logger.warning("No images found under %s. Exiting.", root)
        return 0

    session = Session(runner=PipelineRunner(remote=GeminiRemoteModel(), cfg=cfg))
    session.subscribe(_log_progress)
    session.add_images(images)

    outcomes = await session.process(batch_size=args.batch_size if args.batch_size > 0 else None)
    failed = [o for o in outcomes if not o.success]
    for img in session.state.images:
        if img.status == "error":
            logger.warning("FAILED %s: %s", img.filename, img.error_reason)

    search_batch = args.search_batch_size if args.search_batch_size > 0 else None
    for query in args.query:
        results = await session.search(query, search_batch)
        print(f'\nQuery: "{query}" ({len(results)} matches)')
        for rank, r in enumerate(results[: max(args.limit, 0)], start=1):
            img = session.state.get_image(r.image_id)
            name = img.filename if img else r.image_id
            line = f"{rank:>3}. {r.score:.2f}  {name}"
            if r.reasoning:
                line += f"  - {r.reasoning}"
            print(line)

    logger.info("DONE images=%d failed=%d", len(outcomes), len(failed))
    return 0 if not failed else 2


def main() -> None:
    raise SystemExit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()
