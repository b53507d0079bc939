# ticketbot/ledger.py
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .domain import ChefRecord, ChefStatus, OrderRecord, OrderType
from .errors import NotFound, PersistenceFailure
from .models import Chef, Order

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50

_ZERO = Decimal("0.00")


def _money(value) -> Decimal:
    if value is None:
        return _ZERO
    return Decimal(value).quantize(Decimal("0.01"))


def _chef_record(row: Chef) -> ChefRecord:
    return ChefRecord(
        user_id=row.user_id,
        username=row.username,
        status=ChefStatus(row.status or ChefStatus.CLOSED.value),
        debt_amount=_money(row.debt_amount),
        total_completed=int(row.total_completed or 0),
        created_at=row.created_at,
    )


def _order_record(row: Order) -> OrderRecord:
    return OrderRecord(
        id=row.id,
        chef_id=row.chef_id,
        customer_id=row.customer_id,
        order_type=OrderType(row.order_type),
        amount=_money(row.amount),
        completed_at=row.completed_at,
    )


class ChefLedger:
    """
    Durable per-chef status, debt and completed-order count, plus the
    append-only order history. Each method runs in its own transaction.
    """

    def __init__(self, sessions: Callable[[], Session]) -> None:
        self._sessions = sessions

    # -------------------
    # Reads
    # -------------------
    def get(self, user_id: str) -> Optional[ChefRecord]:
        with self._sessions() as db:
            try:
                row = db.query(Chef).filter(Chef.user_id == user_id).first()
            except SQLAlchemyError as e:
                raise self._failure("reading chef", e) from e
            return _chef_record(row) if row else None

    def list_all(self) -> List[ChefRecord]:
        with self._sessions() as db:
            try:
                rows = db.query(Chef).order_by(Chef.username.asc()).all()
            except SQLAlchemyError as e:
                raise self._failure("listing chefs", e) from e
            return [_chef_record(r) for r in rows]

    def list_with_debt(self) -> List[ChefRecord]:
        with self._sessions() as db:
            try:
                rows = (
                    db.query(Chef)
                    .filter(Chef.debt_amount > 0)
                    .order_by(Chef.debt_amount.desc())
                    .all()
                )
            except SQLAlchemyError as e:
                raise self._failure("listing debts", e) from e
            return [_chef_record(r) for r in rows]

    def order_history(self, chef_id: str | None = None, limit: int = HISTORY_LIMIT) -> List[OrderRecord]:
        with self._sessions() as db:
            try:
                q = db.query(Order)
                if chef_id:
                    q = q.filter(Order.chef_id == chef_id)
                rows = q.order_by(Order.completed_at.desc(), Order.id.desc()).limit(limit).all()
            except SQLAlchemyError as e:
                raise self._failure("reading order history", e) from e
            return [_order_record(r) for r in rows]

    def history_totals(self, chef_id: str) -> Tuple[int, Decimal]:
        """Count and sum of every order ever recorded for the chef."""
        with self._sessions() as db:
            try:
                count, total = (
                    db.query(func.count(Order.id), func.coalesce(func.sum(Order.amount), 0))
                    .filter(Order.chef_id == chef_id)
                    .one()
                )
            except SQLAlchemyError as e:
                raise self._failure("reading order totals", e) from e
            return int(count or 0), _money(total)

    # -------------------
    # Mutations
    # -------------------
    def upsert_chef(self, user_id: str, username: str) -> ChefRecord:
        with self._sessions() as db:
            try:
                row = db.query(Chef).filter(Chef.user_id == user_id).first()
                if row:
                    row.username = username or row.username
                else:
                    row = Chef(
                        user_id=user_id,
                        username=username or user_id,
                        status=ChefStatus.CLOSED.value,
                        debt_amount=_ZERO,
                        total_completed=0,
                        created_at=datetime.utcnow(),
                    )
                    db.add(row)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise self._failure("saving chef", e) from e
            return _chef_record(row)

    def set_status(self, user_id: str, status: ChefStatus) -> bool:
        status = ChefStatus(status)
        with self._sessions() as db:
            try:
                updated = (
                    db.query(Chef)
                    .filter(Chef.user_id == user_id)
                    .update({Chef.status: status.value}, synchronize_session=False)
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise self._failure("updating chef status", e) from e
        return bool(updated)

    def add_debt_and_record_order(
        self,
        chef_id: str,
        amount: Decimal,
        order_type: OrderType,
        customer_id: str,
    ) -> OrderRecord:
        """
        Debt increment, completed-count increment and the history row are one
        transaction: either all three land or none does.
        """
        amount = _money(amount)
        with self._sessions() as db:
            try:
                updated = (
                    db.query(Chef)
                    .filter(Chef.user_id == chef_id)
                    .update(
                        {
                            Chef.debt_amount: Chef.debt_amount + amount,
                            Chef.total_completed: Chef.total_completed + 1,
                        },
                        synchronize_session=False,
                    )
                )
                if not updated:
                    db.rollback()
                    raise NotFound(f"Chef {chef_id} is not registered!")

                order = Order(
                    chef_id=chef_id,
                    customer_id=customer_id,
                    order_type=OrderType(order_type).value,
                    amount=amount,
                    completed_at=datetime.utcnow(),
                )
                db.add(order)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise self._failure("recording completed order", e) from e
            return _order_record(order)

    def clear_debt(self, user_id: str) -> Decimal:
        """Reset debt to zero and return what was cleared. Zero debt is left untouched."""
        with self._sessions() as db:
            try:
                row = db.query(Chef).filter(Chef.user_id == user_id).first()
                if not row:
                    raise NotFound(f"<@{user_id}> is not registered as a chef!")
                cleared = _money(row.debt_amount)
                if cleared == _ZERO:
                    return _ZERO
                row.debt_amount = _ZERO
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise self._failure("clearing debt", e) from e
            return cleared

    def remove(self, user_id: str) -> bool:
        """Delete the chef row. Order history is kept."""
        with self._sessions() as db:
            try:
                deleted = db.query(Chef).filter(Chef.user_id == user_id).delete(synchronize_session=False)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise self._failure("removing chef", e) from e
        return bool(deleted)

    @staticmethod
    def _failure(action: str, error: Exception) -> PersistenceFailure:
        logger.error("Ledger error while %s: %s", action, error)
        return PersistenceFailure()
