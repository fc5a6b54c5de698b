"""Append-only run journal backed by SQLModel.

Journal writes never interrupt trading: database errors are logged and
dropped.
"""

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from dualinvest.models import CycleLog, HedgeAction, SubscriptionLog

logger = logging.getLogger(__name__)


class Journal:
    def __init__(self, engine: Engine):
        self.engine = engine

    def _add(self, row):
        try:
            with Session(self.engine) as session:
                session.add(row)
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to write {type(row).__name__}: {e}")

    def log_cycle(self, status: str, **fields):
        self._add(CycleLog(status=status, **fields))

    def record_subscription(self, **fields):
        self._add(SubscriptionLog(**fields))

    def record_hedge(self, **fields):
        self._add(HedgeAction(**fields))

    def recent_cycles(self, limit: int = 20) -> list[CycleLog]:
        with Session(self.engine) as session:
            return list(session.exec(select(CycleLog).order_by(CycleLog.id.desc()).limit(limit)).all())

    def subscriptions(self, product_id: str | None = None) -> list[SubscriptionLog]:
        with Session(self.engine) as session:
            query = select(SubscriptionLog)
            if product_id is not None:
                query = query.where(SubscriptionLog.product_id == product_id)
            return list(session.exec(query.order_by(SubscriptionLog.id)).all())

    def hedge_actions(self, position_id: str | None = None) -> list[HedgeAction]:
        with Session(self.engine) as session:
            query = select(HedgeAction)
            if position_id is not None:
                query = query.where(HedgeAction.position_id == position_id)
            return list(session.exec(query.order_by(HedgeAction.id)).all())
