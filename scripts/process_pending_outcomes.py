"""Extract learnings for closed complaints that have not been analysed yet.

Usage:
    python scripts/process_pending_outcomes.py        # up to 10 outcomes
    python scripts/process_pending_outcomes.py 50     # up to 50 outcomes
"""

import asyncio
import sys

from app.services.outcome_learning import process_pending_outcomes


def main() -> None:
    limit = int(sys.argv[1]) if len(sys.argv) > 1 else 10

    result = asyncio.run(process_pending_outcomes(limit))
    print(f"{result['processed']} outcomes processed, {result['errors']} errors")
    if result["errors"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
