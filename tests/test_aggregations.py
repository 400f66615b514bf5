from datetime import date
from types import SimpleNamespace

import pytest

from ledgerlens.core.query.templates import (
    bucket_by_month,
    bucket_by_category,
    bucket_by_vendor,
    price_change,
    rank_price_changes,
    summarize_amounts,
)


def make_expense(amount, when, pre_tax=None, tax=None, category=None, vendor=None):
    return SimpleNamespace(
        amount=amount,
        amount_pre_tax=pre_tax,
        tax_amount=tax,
        expense_date=when,
        category=category,
        vendor=vendor,
    )


def make_item(item_id, name="Item", unit="each"):
    return SimpleNamespace(id=item_id, name=name, unit=unit)


def test_monthly_buckets_sum_to_grand_total():
    expenses = [
        make_expense(100, date(2024, 3, 2), pre_tax=92, tax=8),
        make_expense(40, date(2024, 1, 15)),
        make_expense(60, date(2024, 1, 31), pre_tax=55, tax=5),
        make_expense(25, date(2024, 2, 1)),
    ]

    result = bucket_by_month(expenses)

    assert [m.month for m in result.months] == ["2024-01", "2024-02", "2024-03"]
    assert sum(m.total for m in result.months) == pytest.approx(result.grand_total)
    assert result.grand_total == pytest.approx(225)
    assert result.total_count == 4

    january = result.months[0]
    # Missing pre-tax falls back to the total, missing tax counts as zero
    assert january.pre_tax_total == pytest.approx(95)
    assert january.tax_total == pytest.approx(5)
    assert january.effective_tax_rate == pytest.approx(5 / 95 * 100)


def test_monthly_bucket_with_zero_pre_tax_has_zero_rate():
    result = bucket_by_month([make_expense(0, date(2024, 5, 1), pre_tax=0, tax=0)])

    assert result.months[0].effective_tax_rate == 0
    assert result.average_tax_rate == 0


def test_monthly_buckets_empty():
    result = bucket_by_month([])

    assert result.months == []
    assert result.grand_total == 0
    assert result.total_count == 0


def test_category_buckets_share_of_total():
    food = SimpleNamespace(id="cat-food", name="Food")
    expenses = [
        make_expense(100, date(2024, 1, 1), pre_tax=91.75, tax=8.25, category=food),
        make_expense(50, date(2024, 1, 2), tax=0),
    ]

    result = bucket_by_category(expenses)

    assert [c.category_name for c in result.categories] == ["Food", "Uncategorized"]
    assert result.categories[1].category_id == "uncategorized"
    assert result.categories[0].percent_of_total == pytest.approx(66.666, rel=1e-3)
    assert result.categories[1].percent_of_total == pytest.approx(33.333, rel=1e-3)
    assert result.grand_total == pytest.approx(150)
    assert result.grand_tax_total == pytest.approx(8.25)


def test_category_percent_is_zero_when_nothing_spent():
    result = bucket_by_category([make_expense(0, date(2024, 1, 1))])
    assert result.categories[0].percent_of_total == 0


def test_vendor_buckets_skip_missing_vendor_and_truncate():
    expenses = [
        make_expense(10, date(2024, 1, 1), vendor="A"),
        make_expense(30, date(2024, 1, 1), vendor="B"),
        make_expense(25, date(2024, 1, 1), vendor="C"),
        make_expense(999, date(2024, 1, 1), vendor=None),
        make_expense(15, date(2024, 1, 2), vendor="A"),
    ]

    result = bucket_by_vendor(expenses, limit=2)

    assert [v.vendor for v in result.vendors] == ["B", "A"]
    assert result.vendors[1].total == pytest.approx(25)
    assert result.vendors[1].count == 2


def test_price_change_percent():
    entry = price_change(make_item("a"), 10.0, 12.0)

    assert entry.change == pytest.approx(2.0)
    assert entry.percent_change == pytest.approx(20.0)


def test_price_change_needs_both_endpoints():
    assert price_change(make_item("a"), None, 12.0) is None
    assert price_change(make_item("a"), 10.0, None) is None
    assert price_change(make_item("a"), 0.0, 3.0) is None


def test_rank_price_changes_orders_by_absolute_percent():
    candidates = [
        price_change(make_item("up"), 10.0, 12.0),  # +20%
        price_change(make_item("flat"), 5.0, 5.0),  # 0%
        None,
        price_change(make_item("down"), 4.0, 3.0),  # -25%
        price_change(make_item("small"), 100.0, 101.0),  # +1%
    ]

    ranked = rank_price_changes(candidates, limit=10)

    assert [e.item_id for e in ranked] == ["down", "up", "small"]
    assert all(e.start_price != e.end_price for e in ranked)
    assert len(rank_price_changes(candidates, limit=2)) == 2


def test_summarize_amounts():
    summary = summarize_amounts([100, 120, 110])

    assert summary.count == 3
    assert summary.total == pytest.approx(330)
    assert summary.average == pytest.approx(110)
    assert summary.min == 100
    assert summary.max == 120
    assert summary.variance == summary.max - summary.min == 20


def test_summarize_no_amounts():
    summary = summarize_amounts([])
    assert summary.count == 0
    assert summary.variance == 0
