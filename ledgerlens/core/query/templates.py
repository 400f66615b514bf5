import asyncio
import logging
from decimal import Decimal
from typing import Dict, Any, Awaitable, List, Optional, Iterable

from ledgerlens.core import models
from ledgerlens.core.config import settings
from ledgerlens.core.schemas import (
    AIQueryContext,
    CurrentPriceParams,
    PriceAtDateParams,
    PriceHistoryParams,
    TopPriceChangesParams,
    MonthlyExpensesParams,
    ExpensesByCategoryParams,
    TopVendorsParams,
    SearchItemsParams,
    CrossOrgItemPricesParams,
    RecurringTemplatesParams,
    RecurringExpenseHistoryParams,
    CrossOrgSpendingParams,
    CurrentPriceResult,
    PriceAtDateResult,
    PricePoint,
    PriceHistoryResult,
    PriceChangeEntry,
    TopPriceChangesResult,
    MonthlyBucket,
    MonthlyExpensesResult,
    CategoryBucket,
    ExpensesByCategoryResult,
    VendorBucket,
    TopVendorsResult,
    ItemSummary,
    SearchItemsResult,
    CrossOrgEntry,
    CrossOrgItemPricesResult,
    RecurringTemplateSummary,
    RecurringTemplatesResult,
    RecurringHistoryEntry,
    RecurringSummary,
    RecurringExpenseHistoryResult,
    OrgSpending,
    CrossOrgSpendingResult,
)
from ledgerlens.core.query.errors import NotFound
from ledgerlens.core.query.permissions import enforce_org_scope, require_cross_org
from ledgerlens.core.query.store import Store


# -----------------------------------------------------------------------------
# TEMPLATE EXECUTORS
# Purpose: one fixed read pattern per template, aggregated in Python.
# Every executor re-checks permissions first; the dispatcher check is not
# enough on its own because org-scoped and cross-org rules differ.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

UNCATEGORIZED_ID = "uncategorized"
UNCATEGORIZED_NAME = "Uncategorized"


def _money(value: Optional[Decimal]) -> float:
    return float(value) if value is not None else 0.0


def _optional_money(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _pre_tax(expense) -> float:
    # Receipts without a split count the full amount as pre-tax
    if expense.amount_pre_tax is None:
        return _money(expense.amount)
    return _money(expense.amount_pre_tax)


def _tax(expense) -> float:
    return _money(expense.tax_amount)


def _tax_rate(tax: float, pre_tax: float) -> float:
    return tax / pre_tax * 100 if pre_tax > 0 else 0.0


async def gather_reads(*reads: Awaitable) -> List[Any]:
    """
    Run store reads concurrently and return their results in order.

    The first failure (or cancellation of the caller) cancels every read
    still in flight and waits for them to unwind before re-raising, so no
    session outlives the template call.
    """
    tasks = [asyncio.ensure_future(read) for read in reads]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def _new_bucket() -> Dict[str, Any]:
    return {"total": 0.0, "pre_tax": 0.0, "tax": 0.0, "count": 0}


def _add_to_bucket(bucket: Dict[str, Any], expense) -> None:
    bucket["total"] += _money(expense.amount)
    bucket["pre_tax"] += _pre_tax(expense)
    bucket["tax"] += _tax(expense)
    bucket["count"] += 1


# =========================
# Pure aggregations
# =========================
def bucket_by_month(expenses: Iterable) -> MonthlyExpensesResult:
    """
    Group expenses into YYYY-MM buckets with a tax breakdown.

    Example:
        months=[{"month": "2025-01", "total": 150.0, "preTaxTotal": 141.75,
                 "taxTotal": 8.25, "effectiveTaxRate": 5.82, "count": 2}]
    """
    buckets: Dict[str, Dict[str, Any]] = {}
    for expense in expenses:
        month = expense.expense_date.strftime("%Y-%m")
        _add_to_bucket(buckets.setdefault(month, _new_bucket()), expense)

    months = [
        MonthlyBucket(
            month=month,
            total=data["total"],
            pre_tax_total=data["pre_tax"],
            tax_total=data["tax"],
            effective_tax_rate=_tax_rate(data["tax"], data["pre_tax"]),
            count=data["count"],
        )
        for month, data in sorted(buckets.items())
    ]

    grand_pre_tax = sum(m.pre_tax_total for m in months)
    grand_tax = sum(m.tax_total for m in months)

    return MonthlyExpensesResult(
        months=months,
        grand_total=sum(m.total for m in months),
        grand_pre_tax_total=grand_pre_tax,
        grand_tax_total=grand_tax,
        average_tax_rate=_tax_rate(grand_tax, grand_pre_tax),
        total_count=sum(m.count for m in months),
    )


def bucket_by_category(expenses: Iterable) -> ExpensesByCategoryResult:
    buckets: Dict[str, Dict[str, Any]] = {}
    for expense in expenses:
        category = expense.category
        category_id = category.id if category is not None else UNCATEGORIZED_ID
        if category_id not in buckets:
            buckets[category_id] = _new_bucket()
            buckets[category_id]["name"] = (
                category.name if category is not None else UNCATEGORIZED_NAME
            )
        _add_to_bucket(buckets[category_id], expense)

    grand_total = sum(b["total"] for b in buckets.values())
    grand_tax = sum(b["tax"] for b in buckets.values())

    categories = [
        CategoryBucket(
            category_id=category_id,
            category_name=data["name"],
            total=data["total"],
            pre_tax_total=data["pre_tax"],
            tax_total=data["tax"],
            count=data["count"],
            percent_of_total=(
                data["total"] / grand_total * 100 if grand_total > 0 else 0.0
            ),
        )
        for category_id, data in buckets.items()
    ]
    categories.sort(key=lambda c: c.total, reverse=True)

    return ExpensesByCategoryResult(
        categories=categories, grand_total=grand_total, grand_tax_total=grand_tax
    )


def bucket_by_vendor(expenses: Iterable, limit: int) -> TopVendorsResult:
    buckets: Dict[str, Dict[str, Any]] = {}
    for expense in expenses:
        if not expense.vendor:
            continue
        _add_to_bucket(buckets.setdefault(expense.vendor, _new_bucket()), expense)

    vendors = [
        VendorBucket(
            vendor=vendor,
            total=data["total"],
            pre_tax_total=data["pre_tax"],
            tax_total=data["tax"],
            count=data["count"],
        )
        for vendor, data in buckets.items()
    ]
    vendors.sort(key=lambda v: v.total, reverse=True)

    return TopVendorsResult(vendors=vendors[:limit])


def rank_price_changes(
    candidates: Iterable[Optional[PriceChangeEntry]], limit: int
) -> List[PriceChangeEntry]:
    """Drop empty and unchanged entries, biggest relative move first."""
    changed = [c for c in candidates if c is not None and c.change != 0]
    changed.sort(key=lambda c: abs(c.percent_change), reverse=True)
    return changed[:limit]


def price_change(
    item: models.InventoryItem,
    start_price: Optional[float],
    end_price: Optional[float],
) -> Optional[PriceChangeEntry]:
    # Percent change needs a non-zero baseline
    if not start_price or end_price is None:
        return None

    change = end_price - start_price
    return PriceChangeEntry(
        item_id=item.id,
        item_name=item.name,
        unit=item.unit,
        start_price=start_price,
        end_price=end_price,
        change=change,
        percent_change=change / start_price * 100,
    )


def summarize_amounts(amounts: List[float]) -> RecurringSummary:
    if not amounts:
        return RecurringSummary(count=0, total=0, average=0, min=0, max=0, variance=0)

    total = sum(amounts)
    low, high = min(amounts), max(amounts)
    return RecurringSummary(
        count=len(amounts),
        total=total,
        average=total / len(amounts),
        min=low,
        max=high,
        variance=high - low,
    )


# =========================
# Price templates
# =========================
async def current_price(
    context: AIQueryContext, params: CurrentPriceParams, store: Store
) -> CurrentPriceResult:
    org_id = enforce_org_scope(context, params.org_id)

    row = await store.latest_price(org_id, params.item_id)
    if row is None:
        raise NotFound("No price found for item")

    price, item = row
    return CurrentPriceResult(
        item_id=item.id,
        item_name=item.name,
        unit=item.unit,
        current_price=_money(price.unit_price),
        vendor=price.vendor,
        effective_at=price.effective_at.isoformat(),
    )


async def price_at_date(
    context: AIQueryContext, params: PriceAtDateParams, store: Store
) -> PriceAtDateResult:
    org_id = enforce_org_scope(context, params.org_id)

    row = await store.latest_price(org_id, params.item_id, as_of=params.query_date)
    if row is None:
        raise NotFound(
            f"No price found for item on or before {params.query_date.isoformat()}"
        )

    price, item = row
    return PriceAtDateResult(
        item_id=item.id,
        item_name=item.name,
        unit=item.unit,
        price=_money(price.unit_price),
        vendor=price.vendor,
        effective_at=price.effective_at.isoformat(),
        query_date=params.query_date.isoformat(),
    )


async def price_history(
    context: AIQueryContext, params: PriceHistoryParams, store: Store
) -> PriceHistoryResult:
    org_id = enforce_org_scope(context, params.org_id)

    item, rows = await gather_reads(
        store.get_item(org_id, params.item_id),
        store.price_history(org_id, params.item_id, params.start_date),
    )

    return PriceHistoryResult(
        item_id=params.item_id,
        item_name=item.name if item is not None else None,
        unit=item.unit if item is not None else None,
        history=[
            PricePoint(
                price=_money(row.unit_price),
                vendor=row.vendor,
                effective_at=row.effective_at.isoformat(),
                note=row.note,
            )
            for row in rows
        ],
    )


async def top_price_changes(
    context: AIQueryContext, params: TopPriceChangesParams, store: Store
) -> TopPriceChangesResult:
    org_id = enforce_org_scope(context, params.org_id)

    items = await store.active_items(org_id)
    if not items:
        return TopPriceChangesResult(items=[])

    async def change_for(item: models.InventoryItem) -> Optional[PriceChangeEntry]:
        start_row, end_row = await gather_reads(
            store.latest_price(org_id, item.id, as_of=params.start_date),
            store.latest_price(org_id, item.id),
        )
        start = _money(start_row[0].unit_price) if start_row else None
        end = _money(end_row[0].unit_price) if end_row else None
        return price_change(item, start, end)

    # All or nothing: a failed or cancelled read fails the whole template
    candidates = await gather_reads(*(change_for(item) for item in items))

    logger.debug(f"Compared prices for {len(items)} items in org {org_id}")
    return TopPriceChangesResult(items=rank_price_changes(candidates, params.limit))


async def search_items(
    context: AIQueryContext, params: SearchItemsParams, store: Store
) -> SearchItemsResult:
    org_id = enforce_org_scope(context, params.org_id)

    items = await store.search_items(
        org_id, params.search_term, settings.SEARCH_RESULT_LIMIT
    )
    return SearchItemsResult(
        items=[
            ItemSummary(
                id=item.id,
                name=item.name,
                sku=item.sku,
                unit=item.unit,
                is_active=item.is_active,
            )
            for item in items
        ]
    )


# =========================
# Expense templates
# =========================
async def monthly_expenses(
    context: AIQueryContext, params: MonthlyExpensesParams, store: Store
) -> MonthlyExpensesResult:
    org_id = enforce_org_scope(context, params.org_id)

    expenses = await store.expenses_in_range(org_id, params.start_date, params.end_date)
    return bucket_by_month(expenses)


async def expenses_by_category(
    context: AIQueryContext, params: ExpensesByCategoryParams, store: Store
) -> ExpensesByCategoryResult:
    org_id = enforce_org_scope(context, params.org_id)

    expenses = await store.expenses_in_range(org_id, params.start_date, params.end_date)
    return bucket_by_category(expenses)


async def top_vendors(
    context: AIQueryContext, params: TopVendorsParams, store: Store
) -> TopVendorsResult:
    org_id = enforce_org_scope(context, params.org_id)

    expenses = await store.expenses_in_range(org_id, params.start_date, params.end_date)
    return bucket_by_vendor(expenses, params.limit)


# =========================
# Recurring templates
# =========================
async def recurring_templates(
    context: AIQueryContext, params: RecurringTemplatesParams, store: Store
) -> RecurringTemplatesResult:
    org_id = enforce_org_scope(context, params.org_id)

    templates = await store.active_recurring_templates(org_id)
    return RecurringTemplatesResult(
        templates=[
            RecurringTemplateSummary(
                id=t.id,
                name=t.name,
                vendor=t.vendor,
                estimated_amount=_optional_money(t.estimated_amount),
                frequency=t.frequency,
                typical_day_of_month=t.typical_day_of_month,
                category_name=t.category.name if t.category else UNCATEGORIZED_NAME,
            )
            for t in templates
        ]
    )


async def recurring_expense_history(
    context: AIQueryContext, params: RecurringExpenseHistoryParams, store: Store
) -> RecurringExpenseHistoryResult:
    """
    How a recurring bill moved over time.

    Returns the template header, every linked expense in the range (oldest
    first) and a summary whose variance is the max-min spread.
    """
    org_id = enforce_org_scope(context, params.org_id)

    template, expenses = await gather_reads(
        store.get_recurring_template(org_id, params.template_id),
        store.recurring_expenses(
            org_id, params.template_id, params.start_date, params.end_date
        ),
    )
    if template is None:
        raise NotFound("Recurring template not found")

    history = [
        RecurringHistoryEntry(
            expense_date=e.expense_date.isoformat(),
            month=e.expense_date.strftime("%Y-%m"),
            amount=_money(e.amount),
            pre_tax=_optional_money(e.amount_pre_tax),
            tax=_optional_money(e.tax_amount),
            notes=e.notes,
        )
        for e in expenses
    ]

    return RecurringExpenseHistoryResult(
        template_id=template.id,
        template_name=template.name,
        vendor=template.vendor,
        estimated_amount=_optional_money(template.estimated_amount),
        history=history,
        summary=summarize_amounts([h.amount for h in history]),
    )


# =========================
# Cross-org templates (super users only)
# =========================
async def cross_org_item_prices(
    context: AIQueryContext, params: CrossOrgItemPricesParams, store: Store
) -> CrossOrgItemPricesResult:
    require_cross_org(context)

    cap = settings.CROSS_ORG_MATCH_LIMIT
    # One extra row tells us whether the cap cut anything off
    items = await store.find_priced_items_everywhere(params.item_name, cap + 1)
    truncated = len(items) > cap
    items = items[:cap]
    if not items:
        return CrossOrgItemPricesResult(comparisons=[])

    org_ids = list(dict.fromkeys(item.org_id for item in items))
    rows = await gather_reads(
        *(store.latest_price(i.org_id, i.id) for i in items),
        *(store.get_org_name(org_id) for org_id in org_ids),
    )
    prices, names = rows[: len(items)], rows[len(items) :]
    org_names = dict(zip(org_ids, names))

    comparisons = []
    for item, row in zip(items, prices):
        if row is None:
            continue
        price = row[0]
        comparisons.append(
            CrossOrgEntry(
                org_id=item.org_id,
                org_name=org_names.get(item.org_id) or "Unknown",
                item_id=item.id,
                item_name=item.name,
                unit=item.unit,
                current_price=_money(price.unit_price),
                vendor=price.vendor,
                effective_at=price.effective_at.isoformat(),
            )
        )

    if truncated:
        logger.info(f"Cross-org match for {params.item_name!r} capped at {cap} items")
    return CrossOrgItemPricesResult(comparisons=comparisons, truncated=truncated)


async def cross_org_spending(
    context: AIQueryContext, params: CrossOrgSpendingParams, store: Store
) -> CrossOrgSpendingResult:
    require_cross_org(context)

    orgs = await store.list_orgs()
    per_org = await gather_reads(
        *(store.expenses_in_range(o.id, params.start_date, params.end_date) for o in orgs)
    )

    spending = []
    for org, expenses in zip(orgs, per_org):
        bucket = _new_bucket()
        for expense in expenses:
            _add_to_bucket(bucket, expense)
        spending.append(
            OrgSpending(
                org_id=org.id,
                org_name=org.name,
                total=bucket["total"],
                pre_tax_total=bucket["pre_tax"],
                tax_total=bucket["tax"],
                count=bucket["count"],
            )
        )
    spending.sort(key=lambda s: s.total, reverse=True)

    return CrossOrgSpendingResult(
        spending=spending,
        grand_total=sum(s.total for s in spending),
        grand_tax_total=sum(s.tax_total for s in spending),
    )
