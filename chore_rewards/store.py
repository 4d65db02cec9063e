"""Row access for every table, plus the atomic point-balance adjustment.

Each public method is one database transaction: it either commits or rolls
back before returning. Database failures surface as ``StoreError``.
"""

import logging
from typing import Any, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .errors import InvalidFieldError, NotFoundOrForbiddenError, StoreError
from .models import PointTransaction, PointTransactionType, Reward, RewardClaim, User

logger = logging.getLogger(__name__)


def _label(model) -> str:
    return model.__name__


class LedgerStore:
    def __init__(self, session: Session):
        self.session = session

    def _fail(self, action: str, exc: SQLAlchemyError):
        self.session.rollback()
        logger.error("Store failure while trying to %s: %s", action, exc)
        raise StoreError(f"Could not {action}. Please try again.") from exc

    def _where(self, statement, model, filters: Optional[dict]):
        for column, value in (filters or {}).items():
            attribute = getattr(model, column)
            if isinstance(value, (list, tuple, set)):
                statement = statement.where(attribute.in_(value))
            else:
                statement = statement.where(attribute == value)
        return statement

    def insert_row(self, model, **fields):
        row = model(**fields)
        try:
            self.session.add(row)
            self.session.commit()
            self.session.refresh(row)
        except SQLAlchemyError as exc:
            self._fail(f"save the {_label(model).lower()}", exc)
        return row

    def get_row(self, model, row_id: str):
        try:
            return self.session.get(model, row_id)
        except SQLAlchemyError as exc:
            self._fail(f"load the {_label(model).lower()}", exc)

    def update_row(
        self,
        model,
        row_id: str,
        fields: dict[str, Any],
        expected: Optional[dict[str, Any]] = None,
        not_found_message: Optional[str] = None,
    ):
        """Update one row, optionally only while ``expected`` columns still hold.

        Raises NotFoundOrForbiddenError when nothing matched.
        """
        statement = self._where(update(model).where(model.id == row_id), model, expected)
        statement = statement.values(**fields).execution_options(synchronize_session=False)
        try:
            matched = self.session.execute(statement).rowcount
            if matched:
                self.session.commit()
            else:
                self.session.rollback()
        except SQLAlchemyError as exc:
            self._fail(f"update the {_label(model).lower()}", exc)
        if not matched:
            raise NotFoundOrForbiddenError(
                not_found_message
                or f"{_label(model)} could not be updated. You may not have permission or it may not exist."
            )
        return self.get_row(model, row_id)

    def query_rows(
        self,
        model,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list:
        statement = self._where(select(model), model, filters)
        if order_by:
            column = getattr(model, order_by)
            statement = statement.order_by(column.desc() if descending else column)
        try:
            return list(self.session.exec(statement).all())
        except SQLAlchemyError as exc:
            self._fail(f"load {_label(model).lower()} rows", exc)

    def count_rows(self, model, filters: Optional[dict[str, Any]] = None) -> int:
        statement = self._where(select(func.count()).select_from(model), model, filters)
        try:
            return int(self.session.exec(statement).one() or 0)
        except SQLAlchemyError as exc:
            self._fail(f"count {_label(model).lower()} rows", exc)

    def delete_row(self, model, row_id: str) -> int:
        statement = delete(model).where(model.id == row_id).execution_options(
            synchronize_session=False
        )
        try:
            affected = self.session.execute(statement).rowcount
            self.session.commit()
        except SQLAlchemyError as exc:
            self._fail(f"delete the {_label(model).lower()}", exc)
        return affected

    def atomic_adjust_points(
        self,
        user_id: str,
        delta: int,
        description: str,
        related_task_id: Optional[str] = None,
        related_claim_id: Optional[str] = None,
    ) -> None:
        """Add ``delta`` to a balance in one UPDATE and record it in the ledger.

        The balance never goes below zero; a deduction that would is refused.
        """
        if delta == 0:
            raise InvalidFieldError("A point adjustment must not be zero")
        statement = (
            update(User)
            .where(User.id == user_id, User.points + delta >= 0)
            .values(points=User.points + delta)
            .execution_options(synchronize_session=False)
        )
        try:
            matched = self.session.execute(statement).rowcount
            if matched:
                self.session.add(
                    PointTransaction(
                        user_id=user_id,
                        amount=delta,
                        transaction_type=(
                            PointTransactionType.earn if delta > 0 else PointTransactionType.spend
                        ),
                        description=description,
                        related_task_id=related_task_id,
                        related_claim_id=related_claim_id,
                    )
                )
                self.session.commit()
            else:
                self.session.rollback()
        except SQLAlchemyError as exc:
            self._fail("update the point balance", exc)
        if not matched:
            if self.get_row(User, user_id) is None:
                raise StoreError("The user whose points should change does not exist.")
            raise StoreError("Not enough points for this reward.")
        logger.info("Adjusted points for user %s by %+d (%s)", user_id, delta, description)

    def add_user_points(self, user_id: str, points: int, description: str, **related) -> None:
        self.atomic_adjust_points(user_id, abs(points), description, **related)

    def deduct_user_points(self, user_id: str, points: int, description: str, **related) -> None:
        self.atomic_adjust_points(user_id, -abs(points), description, **related)

    def point_history(self, user_id: str) -> list[PointTransaction]:
        return self.query_rows(
            PointTransaction, {"user_id": user_id}, order_by="created_at", descending=True
        )

    def ledger_balance(self, user_id: str) -> int:
        try:
            total = self.session.exec(
                select(func.coalesce(func.sum(PointTransaction.amount), 0)).where(
                    PointTransaction.user_id == user_id
                )
            ).one()
        except SQLAlchemyError as exc:
            self._fail("load the point history", exc)
        return int(total or 0)

    def family_claims(
        self, family_id: str, status: Optional[Any] = None
    ) -> list[tuple[RewardClaim, Reward]]:
        statement = (
            select(RewardClaim, Reward)
            .join(Reward, Reward.id == RewardClaim.reward_id)
            .where(Reward.family_id == family_id)
        )
        if status is not None:
            statement = statement.where(RewardClaim.status == status)
        statement = statement.order_by(RewardClaim.claimed_at.desc())
        try:
            return list(self.session.exec(statement).all())
        except SQLAlchemyError as exc:
            self._fail("load the reward claims", exc)
