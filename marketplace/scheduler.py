# marketplace/scheduler.py
from apscheduler.schedulers.background import BackgroundScheduler
from . import config, lifecycle
from .db import SessionLocal
from .events import default_notifier
from .utils import logger

scheduler = BackgroundScheduler()


def sweep_expired_auctions():
    db = SessionLocal()
    try:
        return lifecycle.close_expired_auctions(db, notifier=default_notifier)
    finally:
        db.close()


def start_scheduler():
    if not config.AUCTION_SWEEP_ENABLED:
        logger.info("Auction sweep disabled")
        return
    if scheduler.running:
        return
    scheduler.add_job(
        sweep_expired_auctions, 'interval', minutes=config.AUCTION_SWEEP_MINUTES,
        id="auction-sweep", replace_existing=True, max_instances=1, coalesce=True,
    )
    scheduler.start()
    logger.info("Scheduler started, sweeping expired auctions every %s min", config.AUCTION_SWEEP_MINUTES)


def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
