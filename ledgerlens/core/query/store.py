from contextlib import asynccontextmanager
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select, and_, desc, asc, exists
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ledgerlens.core import models
from ledgerlens.core.database import AsyncSessionLocal
from ledgerlens.core.query.errors import StoreFailure


# -----------------------------------------------------------------------------
# STORE ACCESS
# Purpose: the only code that reads tenant tables for the query engine.
# Every method filters on org_id itself; callers never build statements.
# Each call opens its own session so executors can fan reads out concurrently.
# -----------------------------------------------------------------------------


def end_of_day(day: date) -> datetime:
    """First instant after `day`; "as of day" means effective_at < this."""
    return datetime.combine(day + timedelta(days=1), time.min, tzinfo=timezone.utc)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _contains(term: str) -> str:
    # LIKE wildcards typed by the caller are matched literally
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class Store:
    """Read-only repository over the tenant-partitioned tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self):
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as error:
            raise StoreFailure() from error

    # =========================
    # Prices
    # =========================
    async def latest_price(
        self, org_id: str, item_id: str, as_of: Optional[date] = None
    ) -> Optional[Tuple[models.InventoryPriceHistory, models.InventoryItem]]:
        """
        Most recent price row for an item, with the item itself.

        Args:
            org_id: Owning organization
            item_id: Inventory item
            as_of: Only consider prices effective on or before this day

        Returns:
            (price, item) or None when no price matches
        """
        conditions = [
            models.InventoryPriceHistory.org_id == org_id,
            models.InventoryPriceHistory.item_id == item_id,
            models.InventoryItem.org_id == org_id,
        ]
        if as_of is not None:
            conditions.append(
                models.InventoryPriceHistory.effective_at < end_of_day(as_of)
            )

        stmt = (
            select(models.InventoryPriceHistory, models.InventoryItem)
            .join(
                models.InventoryItem,
                models.InventoryItem.id == models.InventoryPriceHistory.item_id,
            )
            .where(and_(*conditions))
            .order_by(desc(models.InventoryPriceHistory.effective_at))
            .limit(1)
        )

        async with self._session() as session:
            result = await session.execute(stmt)
            row = result.first()

        if row is None:
            return None
        return row[0], row[1]

    async def price_history(
        self, org_id: str, item_id: str, since: date
    ) -> List[models.InventoryPriceHistory]:
        stmt = (
            select(models.InventoryPriceHistory)
            .where(
                and_(
                    models.InventoryPriceHistory.org_id == org_id,
                    models.InventoryPriceHistory.item_id == item_id,
                    models.InventoryPriceHistory.effective_at >= start_of_day(since),
                )
            )
            .order_by(asc(models.InventoryPriceHistory.effective_at))
        )

        async with self._session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # =========================
    # Inventory items
    # =========================
    async def get_item(
        self, org_id: str, item_id: str
    ) -> Optional[models.InventoryItem]:
        stmt = select(models.InventoryItem).where(
            and_(
                models.InventoryItem.org_id == org_id,
                models.InventoryItem.id == item_id,
            )
        )

        async with self._session() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def active_items(self, org_id: str) -> List[models.InventoryItem]:
        stmt = (
            select(models.InventoryItem)
            .where(
                and_(
                    models.InventoryItem.org_id == org_id,
                    models.InventoryItem.is_active.is_(True),
                )
            )
            .order_by(asc(models.InventoryItem.name))
        )

        async with self._session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def search_items(
        self, org_id: str, term: str, limit: int
    ) -> List[models.InventoryItem]:
        stmt = (
            select(models.InventoryItem)
            .where(
                and_(
                    models.InventoryItem.org_id == org_id,
                    models.InventoryItem.name.ilike(_contains(term), escape="\\"),
                )
            )
            .order_by(asc(models.InventoryItem.name))
            .limit(limit)
        )

        async with self._session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def find_priced_items_everywhere(
        self, term: str, limit: int
    ) -> List[models.InventoryItem]:
        """
        Name search across every organization. Super-user templates only.
        Items that never had a price are filtered out before the limit applies.
        """
        has_price = exists().where(
            and_(
                models.InventoryPriceHistory.item_id == models.InventoryItem.id,
                models.InventoryPriceHistory.org_id == models.InventoryItem.org_id,
            )
        )
        stmt = (
            select(models.InventoryItem)
            .where(
                and_(
                    models.InventoryItem.is_active.is_(True),
                    models.InventoryItem.name.ilike(_contains(term), escape="\\"),
                    has_price,
                )
            )
            .order_by(asc(models.InventoryItem.org_id), asc(models.InventoryItem.name))
            .limit(limit)
        )

        async with self._session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # =========================
    # Organizations
    # =========================
    async def get_org_name(self, org_id: str) -> Optional[str]:
        stmt = select(models.Organization.name).where(models.Organization.id == org_id)

        async with self._session() as session:
            result = await session.execute(stmt)
            return result.scalar()

    async def list_orgs(self) -> List[models.Organization]:
        stmt = select(models.Organization).order_by(asc(models.Organization.name))

        async with self._session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # =========================
    # Expenses
    # =========================
    async def expenses_in_range(
        self, org_id: str, start_date: date, end_date: date
    ) -> List[models.Expense]:
        """Expenses dated within [start_date, end_date], category loaded."""
        stmt = (
            select(models.Expense)
            .options(selectinload(models.Expense.category))
            .where(
                and_(
                    models.Expense.org_id == org_id,
                    models.Expense.expense_date >= start_date,
                    models.Expense.expense_date <= end_date,
                )
            )
        )

        async with self._session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # =========================
    # Recurring expenses
    # =========================
    async def active_recurring_templates(
        self, org_id: str
    ) -> List[models.RecurringExpenseTemplate]:
        stmt = (
            select(models.RecurringExpenseTemplate)
            .options(selectinload(models.RecurringExpenseTemplate.category))
            .where(
                and_(
                    models.RecurringExpenseTemplate.org_id == org_id,
                    models.RecurringExpenseTemplate.is_active.is_(True),
                )
            )
            .order_by(asc(models.RecurringExpenseTemplate.name))
        )

        async with self._session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_recurring_template(
        self, org_id: str, template_id: str
    ) -> Optional[models.RecurringExpenseTemplate]:
        stmt = select(models.RecurringExpenseTemplate).where(
            and_(
                models.RecurringExpenseTemplate.org_id == org_id,
                models.RecurringExpenseTemplate.id == template_id,
            )
        )

        async with self._session() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def recurring_expenses(
        self, org_id: str, template_id: str, start_date: date, end_date: date
    ) -> List[models.Expense]:
        stmt = (
            select(models.Expense)
            .where(
                and_(
                    models.Expense.org_id == org_id,
                    models.Expense.recurring_template_id == template_id,
                    models.Expense.expense_date >= start_date,
                    models.Expense.expense_date <= end_date,
                )
            )
            .order_by(asc(models.Expense.expense_date))
        )

        async with self._session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())


def get_store() -> Store:
    """FastAPI dependency: a store over the application engine."""
    return Store(AsyncSessionLocal)
