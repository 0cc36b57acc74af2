from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterator, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models import Category, Transaction, User
from schemas import TransactionIn

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: tuple[tuple[str, Decimal], ...] = (
    ("Food", Decimal("8000")),
    ("Transport", Decimal("3000")),
    ("Rent", Decimal("12000")),
    ("Shopping", Decimal("4000")),
    ("Entertainment", Decimal("2500")),
    ("Utilities", Decimal("3500")),
    ("Other", Decimal("2000")),
)

WEEKLY_WINDOW_WEEKS = 12


class ServiceError(Exception):
    status_code = 500


class ValidationError(ServiceError, ValueError):
    status_code = 400


class NotFoundError(ServiceError, ValueError):
    status_code = 404


class StoreError(ServiceError):
    status_code = 500


def _describe(exc: SQLAlchemyError) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)


class BaseService:
    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def _store(self, action: str) -> Iterator[Session]:
        """Roll back and re-raise store failures as StoreError."""
        try:
            yield self.session
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("store_error: action=%s error=%s", action, _describe(exc))
            raise StoreError(_describe(exc)) from exc


class UserService(BaseService):
    def _by_username(self, username: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.username == username))

    def get(self, user_id: int) -> User:
        with self._store("get_user"):
            user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_or_create(self, username: Optional[str]) -> User:
        clean_name = (username or "").strip()
        if not clean_name:
            raise ValidationError("Username is required")

        with self._store("get_or_create_user"):
            existing = self._by_username(clean_name)
            if existing:
                return existing

            user = User(username=clean_name, income=Decimal("0"))
            user.categories = [
                Category(name=name, budget=budget) for name, budget in DEFAULT_CATEGORIES
            ]
            self.session.add(user)
            try:
                self.session.commit()
            except IntegrityError:
                # lost an insert race on the unique username
                self.session.rollback()
                existing = self._by_username(clean_name)
                if not existing:
                    raise
                logger.info("user_create_race: username=%s id=%s", clean_name, existing.id)
                return existing
            self.session.refresh(user)

        logger.info("user_created: username=%s id=%s", user.username, user.id)
        return user

    def set_income(self, user_id: int, income: Decimal) -> None:
        with self._store("set_income"):
            result = self.session.execute(
                update(User).where(User.id == user_id).values(income=income)
            )
            self.session.commit()
        if result.rowcount == 0:
            logger.debug("set_income: no user with id=%s", user_id)

    def delete(self, user_id: int) -> None:
        with self._store("delete_user"):
            self.session.execute(delete(User).where(User.id == user_id))
            self.session.commit()


class CategoryService(BaseService):
    def list_for_user(self, user_id: int) -> list[Category]:
        stmt = select(Category).where(Category.user_id == user_id).order_by(Category.id)
        with self._store("list_categories"):
            return list(self.session.scalars(stmt).all())

    def update_budget(self, category_id: int, budget: Decimal) -> None:
        # no ownership check: any caller holding a category id may change it
        with self._store("update_budget"):
            result = self.session.execute(
                update(Category).where(Category.id == category_id).values(budget=budget)
            )
            self.session.commit()
        if result.rowcount == 0:
            logger.debug("update_budget: no category with id=%s", category_id)


class TransactionService(BaseService):
    def list_for_user(self, user_id: int) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(
                Transaction.date.desc(),
                Transaction.created_at.desc(),
                Transaction.id.desc(),
            )
        )
        with self._store("list_transactions"):
            return list(self.session.scalars(stmt).all())

    def create(self, user_id: int, data: TransactionIn) -> Transaction:
        with self._store("add_transaction"):
            UserService(self.session).get(user_id)
            txn = Transaction(
                user_id=user_id,
                date=data.date,
                description=data.description,
                category=data.category,
                amount=data.amount,
            )
            self.session.add(txn)
            self.session.commit()
            self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> None:
        with self._store("update_transaction"):
            result = self.session.execute(
                update(Transaction)
                .where(Transaction.id == transaction_id)
                .values(
                    date=data.date,
                    description=data.description,
                    category=data.category,
                    amount=data.amount,
                )
            )
            self.session.commit()
        if result.rowcount == 0:
            logger.debug("update_transaction: no transaction with id=%s", transaction_id)

    def delete(self, transaction_id: int) -> None:
        with self._store("delete_transaction"):
            self.session.execute(
                delete(Transaction).where(Transaction.id == transaction_id)
            )
            self.session.commit()

    def reset_user(self, user_id: int) -> None:
        """Drop every transaction of the user and zero the income in one commit."""
        with self._store("reset_user"):
            self.session.execute(delete(Transaction).where(Transaction.user_id == user_id))
            self.session.execute(
                update(User).where(User.id == user_id).values(income=Decimal("0"))
            )
            self.session.commit()
        logger.info("user_reset: id=%s", user_id)


@dataclass(frozen=True)
class WeeklyTotal:
    week: str
    week_num: int
    total: Decimal


class AnalyticsService(BaseService):
    def weekly_expenses(
        self, user_id: int, *, today: Optional[date] = None
    ) -> list[WeeklyTotal]:
        """Per ISO week sums over the last twelve weeks, oldest first.

        Weeks without transactions are left out rather than reported as zero.
        """
        today = today or date.today()
        current_monday = today - timedelta(days=today.weekday())
        window_start = current_monday - timedelta(weeks=WEEKLY_WINDOW_WEEKS - 1)

        with self._store("weekly_expenses"):
            rows = self.session.execute(
                select(Transaction.date, func.sum(Transaction.amount))
                .where(Transaction.user_id == user_id, Transaction.date >= window_start)
                .group_by(Transaction.date)
            ).all()

        totals: dict[tuple[int, int], Decimal] = {}
        for day, amount in rows:
            iso_year, iso_week, _ = day.isocalendar()
            key = (iso_year, iso_week)
            totals[key] = totals.get(key, Decimal("0")) + Decimal(amount or 0)

        keys = sorted(totals)[-WEEKLY_WINDOW_WEEKS:]
        return [
            WeeklyTotal(
                week=f"{year}-{week:02d}",
                week_num=year * 100 + week,
                total=totals[(year, week)],
            )
            for year, week in keys
        ]
