"""Template Dispatch: explicit routing from template name to executor.

Invariants:
    - The registry is built once at import and is read-only afterwards
    - Every TemplateName has exactly one binding (checked at import)
    - execute_query never raises for query problems; it returns a QueryResult
    - Store errors are logged in full here and reach the caller only as
      "Failed to execute query"
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Optional, Type, Union

from pydantic import BaseModel, ValidationError

from ledgerlens.core.config import settings
from ledgerlens.core.schemas import (
    AIQueryContext,
    QueryResult,
    TemplateName,
    TemplateParams,
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
)
from ledgerlens.core.query import templates
from ledgerlens.core.query.errors import (
    QueryError,
    AccessDenied,
    MissingOrgScope,
    InvalidParameters,
    QueryTimeout,
    StoreFailure,
    UnknownTemplate,
    GENERIC_FAILURE,
)
from ledgerlens.core.query.permissions import require_cross_org
from ledgerlens.core.query.store import Store, get_store

logger = logging.getLogger(__name__)

Executor = Callable[[AIQueryContext, Any, Store], Awaitable[BaseModel]]


@dataclass(frozen=True)
class TemplateBinding:
    name: TemplateName
    params_model: Type[TemplateParams]
    executor: Executor
    description: str
    cross_org: bool = False


def _build_registry() -> Mapping[TemplateName, TemplateBinding]:
    # Every mapping explicit: adding a template means editing this list
    bindings = [
        TemplateBinding(
            TemplateName.CURRENT_PRICE,
            CurrentPriceParams,
            templates.current_price,
            "Latest recorded price of one inventory item.",
        ),
        TemplateBinding(
            TemplateName.PRICE_AT_DATE,
            PriceAtDateParams,
            templates.price_at_date,
            "Price of an item as of a date (latest price on or before it).",
        ),
        TemplateBinding(
            TemplateName.PRICE_HISTORY,
            PriceHistoryParams,
            templates.price_history,
            "Every recorded price of an item since a start date, oldest first.",
        ),
        TemplateBinding(
            TemplateName.TOP_PRICE_CHANGES,
            TopPriceChangesParams,
            templates.top_price_changes,
            "Items whose price moved the most (in percent) since a start date.",
        ),
        TemplateBinding(
            TemplateName.MONTHLY_EXPENSES,
            MonthlyExpensesParams,
            templates.monthly_expenses,
            "Monthly expense totals with pre-tax, tax and effective tax rate.",
        ),
        TemplateBinding(
            TemplateName.EXPENSES_BY_CATEGORY,
            ExpensesByCategoryParams,
            templates.expenses_by_category,
            "Expense totals per category with share of the grand total.",
        ),
        TemplateBinding(
            TemplateName.TOP_VENDORS,
            TopVendorsParams,
            templates.top_vendors,
            "Vendors ranked by total spend in a date range.",
        ),
        TemplateBinding(
            TemplateName.SEARCH_ITEMS,
            SearchItemsParams,
            templates.search_items,
            "Find inventory items by name (case-insensitive, max 20).",
        ),
        TemplateBinding(
            TemplateName.RECURRING_TEMPLATES,
            RecurringTemplatesParams,
            templates.recurring_templates,
            "Active recurring expenses such as subscriptions and utilities.",
        ),
        TemplateBinding(
            TemplateName.RECURRING_EXPENSE_HISTORY,
            RecurringExpenseHistoryParams,
            templates.recurring_expense_history,
            "Payments of one recurring expense over time with min/max/average.",
        ),
        TemplateBinding(
            TemplateName.CROSS_ORG_ITEM_PRICES,
            CrossOrgItemPricesParams,
            templates.cross_org_item_prices,
            "Current price of matching items in every organization.",
            cross_org=True,
        ),
        TemplateBinding(
            TemplateName.CROSS_ORG_SPENDING,
            CrossOrgSpendingParams,
            templates.cross_org_spending,
            "Total spend per organization in a date range.",
            cross_org=True,
        ),
    ]

    registry = {binding.name: binding for binding in bindings}
    missing = set(TemplateName) - set(registry)
    if missing or len(registry) != len(bindings):
        raise RuntimeError(
            f"Template registry out of sync with TemplateName: missing={sorted(missing)}"
        )
    return MappingProxyType(registry)


TEMPLATE_REGISTRY = _build_registry()


def get_binding(template: Union[TemplateName, str]) -> Optional[TemplateBinding]:
    try:
        return TEMPLATE_REGISTRY[TemplateName(template)]
    except ValueError:
        return None


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for issue in error.errors():
        location = ".".join(str(part) for part in issue["loc"])
        problems.append(f"{location} ({issue['msg']})" if location else issue["msg"])
    return "; ".join(problems)


def parse_params(binding: TemplateBinding, params: Any) -> TemplateParams:
    if isinstance(params, binding.params_model):
        return params
    if isinstance(params, BaseModel):
        params = params.model_dump(by_alias=True)

    try:
        return binding.params_model.model_validate(params or {})
    except ValidationError as error:
        raise InvalidParameters(
            f"Invalid parameters for {binding.name.value}: "
            f"{_describe_validation_error(error)}"
        ) from error


async def execute_query(
    context: AIQueryContext,
    template: Union[TemplateName, str],
    params: Any = None,
    store: Optional[Store] = None,
    timeout: Optional[float] = None,
) -> QueryResult:
    """
    Run one template for one caller.

    Args:
        context: Caller's query context
        template: Template name
        params: Dict (camelCase or snake_case keys) or the template's params model
        store: Store to read from; defaults to the application engine
        timeout: Deadline in seconds; defaults to settings.QUERY_TIMEOUT_SECONDS

    Returns:
        QueryResult with either data or a caller-safe error message
    """
    binding = get_binding(template)
    if binding is None:
        logger.warning(f"[User {context.user_id}] unknown template {template!r}")
        return QueryResult.failure(UnknownTemplate(str(template)).message)

    name = binding.name.value
    store = store or get_store()
    deadline = settings.QUERY_TIMEOUT_SECONDS if timeout is None else timeout
    started = time.perf_counter()

    try:
        # Cross-org gate comes before params so bad params can't probe past it
        if binding.cross_org:
            require_cross_org(context)
        parsed = parse_params(binding, params)
        data = await asyncio.wait_for(
            binding.executor(context, parsed, store), timeout=deadline
        )
    except asyncio.TimeoutError:
        logger.warning(
            f"[User {context.user_id}] {name} exceeded {deadline}s deadline"
        )
        return QueryResult.failure(QueryTimeout().message)
    except (AccessDenied, MissingOrgScope) as error:
        logger.warning(f"[User {context.user_id}] {name} denied: {error.message}")
        return QueryResult.failure(error.message)
    except StoreFailure:
        logger.exception(f"Query error for {name}")
        return QueryResult.failure(GENERIC_FAILURE)
    except QueryError as error:
        logger.info(f"[User {context.user_id}] {name} rejected: {error.message}")
        return QueryResult.failure(error.message)
    except Exception:
        logger.exception(f"Query error for {name}")
        return QueryResult.failure(GENERIC_FAILURE)

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"[User {context.user_id}] {name} ok in {elapsed_ms:.1f} ms")
    return QueryResult.success(data)
