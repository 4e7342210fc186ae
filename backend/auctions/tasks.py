import logging

from celery import shared_task

from .closing import AuctionCloser

logger = logging.getLogger(__name__)


@shared_task(name="auctions.tasks.close_check")
def close_check():
    """Beat-driven close-check; the HTTP endpoint does the same for external cron."""
    result = AuctionCloser().close_check(triggered_by="scheduler")
    if result.state == "error":
        logger.error("Scheduled close-check failed")
    return result.as_dict()
