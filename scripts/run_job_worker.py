"""Run the background job worker until interrupted.

Usage:
    python scripts/run_job_worker.py
"""

import asyncio

from app.services.job_worker import process_jobs


def main() -> None:
    try:
        asyncio.run(process_jobs())
    except KeyboardInterrupt:
        print("\nWorker stopped.")


if __name__ == "__main__":
    main()
