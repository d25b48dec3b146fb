# marketplace/services.py
"""Side effects that follow a committed sale.

These run after the primary transaction and never undo it; failures are
logged and reported through the return value.
"""
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import SellerStats
from .utils import logger


def record_seller_trade(db: Session, seller_id: str) -> bool:
    try:
        result = db.execute(
            update(SellerStats)
            .where(SellerStats.seller_id == seller_id)
            .values(total_trades=SellerStats.total_trades + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.add(SellerStats(seller_id=seller_id, total_trades=1))
        db.commit()
        return True
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to record completed trade for seller %s", seller_id)
        return False


def seller_trade_count(db: Session, seller_id: str) -> int:
    stats = db.get(SellerStats, seller_id, populate_existing=True)
    return stats.total_trades if stats else 0
