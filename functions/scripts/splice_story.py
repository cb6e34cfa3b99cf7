"""
Run the vignette splicer for one story outside the HTTP service.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.dependencies import get_splicer
from shared.errors import VignetteError

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate and store the nine vignette panels for a story"
    )
    parser.add_argument("story_id", help="Id of the story to splice")
    parser.add_argument(
        "--user-id",
        required=True,
        help="Owner of the story; other users' stories are rejected",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    try:
        result = get_splicer().splice_story(args.story_id, args.user_id)
    except VignetteError as exc:
        logger.error("Splice failed at %s: %s", exc.stage or "START", exc)
        return 1

    print(f"panorama: {result.panoramic_image_url}")
    for panel in result.panels:
        print(f"panel {panel.index}: {panel.image_url}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
