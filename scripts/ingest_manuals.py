"""Crawl and ingest HMRC internal manuals into the knowledge base.

Usage:
    python scripts/ingest_manuals.py              # all manuals, by priority
    python scripts/ingest_manuals.py DMBM ARTG    # selected manuals
"""

import asyncio
import sys

from app.services.knowledge_ingestion import ingest_all_manuals


def main() -> None:
    codes = [c.upper() for c in sys.argv[1:]] or None

    try:
        summaries = asyncio.run(ingest_all_manuals(codes))
    except ValueError as e:
        print(e)
        sys.exit(1)

    for summary in summaries:
        print(
            f"{summary['manual_code']}: "
            f"{summary.get('added', 0)} added, {summary.get('updated', 0)} updated, "
            f"{summary.get('unchanged', 0)} unchanged, {len(summary.get('errors', []))} errors"
        )


if __name__ == "__main__":
    main()
