"""
Scheduler for periodic feed refresh.

Re-seeds the post store from the ingestion collaborator at a fixed interval.
A refresh replaces the whole collection, so periodic refresh is off unless
``OT_FEED_REFRESH_INTERVAL_MINUTES`` is set.
"""

import asyncio
import logging
from datetime import datetime, UTC
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from omnitruth.config import get_settings
from omnitruth.store import PostStore, get_store


logger = logging.getLogger(__name__)

JOB_ID = "feed_refresh"


class FeedRefreshScheduler:
    """
    Scheduler for periodic feed refresh runs.
    """

    def __init__(self, store: PostStore, interval_minutes: Optional[int] = None):
        """
        Initialize the scheduler.

        Args:
            store: Store to refresh
            interval_minutes: Refresh interval (default from settings)
        """
        self.store = store
        self.interval_minutes = interval_minutes or get_settings().feed_refresh_interval_minutes
        self.scheduler = AsyncIOScheduler()
        self._last_run: Optional[datetime] = None
        self._last_result: Optional[dict] = None

    async def run_refresh(self):
        """
        Run a refresh iteration.

        This is called by the scheduler at each interval.
        """
        if self.store.is_loading:
            logger.warning("Feed refresh already in progress, skipping this iteration")
            return

        try:
            logger.info("Starting scheduled feed refresh")
            posts = await self.store.refresh()
            self._last_run = datetime.now(UTC)
            self._last_result = {
                "success": not self.store.last_refresh_failed,
                "posts_loaded": len(posts),
            }
        except Exception as e:
            logger.exception(f"Error in scheduled feed refresh: {e}")
            self._last_result = {"success": False, "error": str(e)}

    def start(self):
        """Start the scheduler."""
        if self.scheduler.running:
            logger.warning("Scheduler already running")
            return
        if not self.interval_minutes or self.interval_minutes <= 0:
            logger.info("Feed refresh interval not set, scheduler not started")
            return

        self.scheduler.add_job(
            self.run_refresh,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=JOB_ID,
            name="Feed Refresh",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping runs
        )

        self.scheduler.start()
        logger.info(
            f"Feed refresh scheduler started - running every {self.interval_minutes} minutes"
        )

    def stop(self):
        """Stop the scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Feed refresh scheduler stopped")

    def get_status(self) -> dict:
        """Get scheduler status."""
        return {
            "running": self.scheduler.running,
            "interval_minutes": self.interval_minutes,
            "last_run": self._last_run.isoformat() if self._last_run else None,
            "last_result": self._last_result,
            "is_refreshing": self.store.is_loading,
            "next_run": self._get_next_run_time(),
        }

    def _get_next_run_time(self) -> Optional[str]:
        """Get the next scheduled run time."""
        if not self.scheduler.running:
            return None

        job = self.scheduler.get_job(JOB_ID)
        if job and job.next_run_time:
            return job.next_run_time.isoformat()
        return None


# Global scheduler instance
_scheduler: Optional[FeedRefreshScheduler] = None


def get_scheduler() -> FeedRefreshScheduler:
    """Get or create the global scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = FeedRefreshScheduler(get_store())
    return _scheduler


def start_scheduler():
    """Start the global scheduler."""
    scheduler = get_scheduler()
    scheduler.start()


def stop_scheduler():
    """Stop the global scheduler."""
    global _scheduler
    if _scheduler is not None:
        _scheduler.stop()
        _scheduler = None


# CLI entry point for running the refresh standalone
if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="OmniTruth Feed Refresh Scheduler")
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Refresh interval in minutes (default from settings)"
    )
    parser.add_argument(
        "--run-once",
        action="store_true",
        help="Refresh once, print the feed size and exit"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.run_once:
        posts = asyncio.run(get_store().refresh())
        print(f"Feed refreshed: {len(posts)} posts")
    else:
        async def _main():
            scheduler = FeedRefreshScheduler(get_store(), interval_minutes=args.interval)
            scheduler.start()
            await scheduler.run_refresh()
            try:
                await asyncio.Event().wait()
            finally:
                scheduler.stop()

        try:
            asyncio.run(_main())
        except KeyboardInterrupt:
            print("\nScheduler stopped")
