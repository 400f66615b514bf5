import uuid

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    String,
    Numeric,
    Boolean,
    Date,
    TIMESTAMP,
    Text,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ledgerlens.core.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


# =========================
# Organization (tenant)
# =========================
class Organization(Base):
    """
    An isolated customer account.
    Every other table is partitioned by org_id.
    """

    __tablename__ = "organization"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=True, unique=True)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Relationships
    items = relationship("InventoryItem", back_populates="organization")
    expenses = relationship("Expense", back_populates="organization")


# =========================
# Expense category
# =========================
class ExpenseCategory(Base):
    __tablename__ = "expense_categories"

    id = Column(String(36), primary_key=True, default=_new_id)
    org_id = Column(
        String(36),
        ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String, nullable=False)


# =========================
# Expense
# =========================
class Expense(Base):
    """
    A single paid expense.
    amount is the total paid (tax included); the pre-tax and tax parts are
    optional because many receipts only carry a total.
    """

    __tablename__ = "expenses"

    id = Column(String(36), primary_key=True, default=_new_id)
    org_id = Column(
        String(36),
        ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category_id = Column(
        String(36),
        ForeignKey("expense_categories.id", ondelete="SET NULL"),
        nullable=True,
    )
    recurring_template_id = Column(
        String(36),
        ForeignKey("recurring_expense_templates.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    amount = Column(Numeric(12, 2), nullable=False)
    amount_pre_tax = Column(Numeric(12, 2), nullable=True)
    tax_amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String, default="USD")

    vendor = Column(String, nullable=True)
    expense_date = Column(Date, nullable=False, index=True)
    notes = Column(Text, nullable=True)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Relationships
    organization = relationship("Organization", back_populates="expenses")
    category = relationship("ExpenseCategory")


# =========================
# Inventory item
# =========================
class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(String(36), primary_key=True, default=_new_id)
    org_id = Column(
        String(36),
        ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = Column(String, nullable=False)
    sku = Column(String, nullable=True)
    unit = Column(String, nullable=False, default="each")
    is_active = Column(Boolean, nullable=False, default=True)

    # Relationships
    organization = relationship("Organization", back_populates="items")
    prices = relationship("InventoryPriceHistory", back_populates="item")


# =========================
# Price history (APPEND-ONLY)
# =========================
class InventoryPriceHistory(Base):
    """
    One row per observed price.
    Rows are never updated; the current price is the row with the latest
    effective_at.
    """

    __tablename__ = "inventory_price_history"

    id = Column(String(36), primary_key=True, default=_new_id)
    org_id = Column(
        String(36),
        ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_id = Column(
        String(36),
        ForeignKey("inventory_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    unit_price = Column(Numeric(12, 4), nullable=False)
    currency = Column(String, default="USD")
    vendor = Column(String, nullable=True)
    note = Column(Text, nullable=True)

    effective_at = Column(TIMESTAMP(timezone=True), nullable=False, index=True)

    # Relationships
    item = relationship("InventoryItem", back_populates="prices")


# =========================
# Recurring expense template
# =========================
class RecurringExpenseTemplate(Base):
    """Subscriptions, utilities and other bills that repeat on a schedule."""

    __tablename__ = "recurring_expense_templates"

    id = Column(String(36), primary_key=True, default=_new_id)
    org_id = Column(
        String(36),
        ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category_id = Column(
        String(36),
        ForeignKey("expense_categories.id", ondelete="SET NULL"),
        nullable=True,
    )

    name = Column(String, nullable=False)
    vendor = Column(String, nullable=True)
    estimated_amount = Column(Numeric(12, 2), nullable=True)
    frequency = Column(String, nullable=False, default="monthly")
    typical_day_of_month = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Relationships
    category = relationship("ExpenseCategory")
