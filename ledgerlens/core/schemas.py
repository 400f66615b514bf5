from datetime import date
from typing import Optional, List, Dict, Any, FrozenSet
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


# =========================
# Enums
# =========================
class QueryScope(str, Enum):
    ORG = "org"
    GLOBAL = "global"


class TemplateName(str, Enum):
    """Closed catalog of query templates. Nothing can be added at runtime."""

    CURRENT_PRICE = "current_price"
    PRICE_AT_DATE = "price_at_date"
    PRICE_HISTORY = "price_history"
    TOP_PRICE_CHANGES = "top_price_changes"
    MONTHLY_EXPENSES = "monthly_expenses"
    EXPENSES_BY_CATEGORY = "expenses_by_category"
    TOP_VENDORS = "top_vendors"
    SEARCH_ITEMS = "search_items"
    CROSS_ORG_ITEM_PRICES = "cross_org_item_prices"
    RECURRING_TEMPLATES = "recurring_templates"
    RECURRING_EXPENSE_HISTORY = "recurring_expense_history"
    CROSS_ORG_SPENDING = "cross_org_spending"


class CamelModel(BaseModel):
    """Wire models use camelCase keys, python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =========================
# QUERY CONTEXT
# =========================
class AIQueryContext(BaseModel):
    """
    Who is asking and what they may see.

    Built once per request by the context resolver and never mutated:
    - org scope: exactly one allowed org, no cross-org queries
    - global scope: every org (allowed_org_ids is None), cross-org queries allowed
    """

    model_config = ConfigDict(frozen=True)

    scope: QueryScope
    allowed_org_ids: Optional[FrozenSet[str]] = None
    can_compare_orgs: bool = False
    user_id: str
    user_name: Optional[str] = None
    active_org_id: Optional[str] = None

    @model_validator(mode="after")
    def check_scope_shape(self):
        if self.scope == QueryScope.ORG:
            if self.allowed_org_ids is None or len(self.allowed_org_ids) != 1:
                raise ValueError("org scope requires exactly one allowed org")
            if self.can_compare_orgs:
                raise ValueError("org scope cannot compare orgs")
        else:
            if self.allowed_org_ids is not None:
                raise ValueError("global scope cannot restrict allowed orgs")
            if not self.can_compare_orgs:
                raise ValueError("global scope must be able to compare orgs")
        return self

    @classmethod
    def for_org(
        cls, org_id: str, user_id: str, user_name: Optional[str] = None
    ) -> "AIQueryContext":
        return cls(
            scope=QueryScope.ORG,
            allowed_org_ids=frozenset({org_id}),
            can_compare_orgs=False,
            user_id=user_id,
            user_name=user_name,
            active_org_id=org_id,
        )

    @classmethod
    def for_superuser(
        cls,
        user_id: str,
        user_name: Optional[str] = None,
        active_org_id: Optional[str] = None,
    ) -> "AIQueryContext":
        return cls(
            scope=QueryScope.GLOBAL,
            allowed_org_ids=None,
            can_compare_orgs=True,
            user_id=user_id,
            user_name=user_name,
            active_org_id=active_org_id,
        )


# =========================
# TEMPLATE PARAMS
# =========================
class TemplateParams(CamelModel):
    # The caller is a language model; unknown keys are a mistake, not a feature
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


class OrgScopedParams(TemplateParams):
    org_id: str = Field(min_length=1)


class DateRangeParams(TemplateParams):
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date > self.end_date:
            raise ValueError("startDate must not be after endDate")
        return self


class CurrentPriceParams(OrgScopedParams):
    item_id: str = Field(min_length=1)


class PriceAtDateParams(OrgScopedParams):
    item_id: str = Field(min_length=1)
    query_date: date = Field(alias="date")


class PriceHistoryParams(OrgScopedParams):
    item_id: str = Field(min_length=1)
    start_date: date


class TopPriceChangesParams(OrgScopedParams):
    start_date: date
    limit: int = Field(default=10, ge=1, le=100)


class MonthlyExpensesParams(OrgScopedParams, DateRangeParams):
    pass


class ExpensesByCategoryParams(OrgScopedParams, DateRangeParams):
    pass


class TopVendorsParams(OrgScopedParams, DateRangeParams):
    limit: int = Field(default=10, ge=1, le=100)


class SearchItemsParams(OrgScopedParams):
    search_term: str = Field(min_length=1, max_length=100)


class RecurringTemplatesParams(OrgScopedParams):
    pass


class RecurringExpenseHistoryParams(OrgScopedParams, DateRangeParams):
    template_id: str = Field(min_length=1)


class CrossOrgItemPricesParams(TemplateParams):
    item_name: str = Field(min_length=1, max_length=100)


class CrossOrgSpendingParams(DateRangeParams):
    pass


# =========================
# RESULTS - PRICES
# =========================
class CurrentPriceResult(CamelModel):
    item_id: str
    item_name: str
    unit: str
    current_price: float
    vendor: Optional[str] = None
    effective_at: str


class PriceAtDateResult(CamelModel):
    item_id: str
    item_name: str
    unit: str
    price: float
    vendor: Optional[str] = None
    effective_at: str
    query_date: str


class PricePoint(CamelModel):
    price: float
    vendor: Optional[str] = None
    effective_at: str
    note: Optional[str] = None


class PriceHistoryResult(CamelModel):
    item_id: str
    item_name: Optional[str] = None
    unit: Optional[str] = None
    history: List[PricePoint] = []


class PriceChangeEntry(CamelModel):
    item_id: str
    item_name: str
    unit: str
    start_price: float
    end_price: float
    change: float
    percent_change: float


class TopPriceChangesResult(CamelModel):
    items: List[PriceChangeEntry] = []


# =========================
# RESULTS - EXPENSES
# =========================
class MonthlyBucket(CamelModel):
    month: str  # YYYY-MM
    total: float
    pre_tax_total: float
    tax_total: float
    effective_tax_rate: float
    count: int


class MonthlyExpensesResult(CamelModel):
    months: List[MonthlyBucket] = []
    grand_total: float = 0
    grand_pre_tax_total: float = 0
    grand_tax_total: float = 0
    average_tax_rate: float = 0
    total_count: int = 0


class CategoryBucket(CamelModel):
    category_id: str
    category_name: str
    total: float
    pre_tax_total: float
    tax_total: float
    count: int
    percent_of_total: float


class ExpensesByCategoryResult(CamelModel):
    categories: List[CategoryBucket] = []
    grand_total: float = 0
    grand_tax_total: float = 0


class VendorBucket(CamelModel):
    vendor: str
    total: float
    pre_tax_total: float
    tax_total: float
    count: int


class TopVendorsResult(CamelModel):
    vendors: List[VendorBucket] = []


# =========================
# RESULTS - INVENTORY SEARCH
# =========================
class ItemSummary(CamelModel):
    id: str
    name: str
    sku: Optional[str] = None
    unit: str
    is_active: bool


class SearchItemsResult(CamelModel):
    items: List[ItemSummary] = []


# =========================
# RESULTS - RECURRING
# =========================
class RecurringTemplateSummary(CamelModel):
    id: str
    name: str
    vendor: Optional[str] = None
    estimated_amount: Optional[float] = None
    frequency: str
    typical_day_of_month: Optional[int] = None
    category_name: str


class RecurringTemplatesResult(CamelModel):
    templates: List[RecurringTemplateSummary] = []


class RecurringHistoryEntry(CamelModel):
    expense_date: str = Field(alias="date")
    month: str
    amount: float
    pre_tax: Optional[float] = None
    tax: Optional[float] = None
    notes: Optional[str] = None


class RecurringSummary(CamelModel):
    count: int
    total: float
    average: float
    min: float
    max: float
    variance: float


class RecurringExpenseHistoryResult(CamelModel):
    template_id: str
    template_name: str
    vendor: Optional[str] = None
    estimated_amount: Optional[float] = None
    history: List[RecurringHistoryEntry] = []
    summary: RecurringSummary


# =========================
# RESULTS - CROSS ORG
# =========================
class CrossOrgEntry(CamelModel):
    org_id: str
    org_name: str
    item_id: str
    item_name: str
    unit: Optional[str] = None
    current_price: float
    vendor: Optional[str] = None
    effective_at: str


class CrossOrgItemPricesResult(CamelModel):
    comparisons: List[CrossOrgEntry] = []
    # More items matched than the cross-org cap allows
    truncated: bool = False


class OrgSpending(CamelModel):
    org_id: str
    org_name: str
    total: float
    pre_tax_total: float
    tax_total: float
    count: int


class CrossOrgSpendingResult(CamelModel):
    spending: List[OrgSpending] = []
    grand_total: float = 0
    grand_tax_total: float = 0


# =========================
# QUERY RESULT ENVELOPE
# =========================
class QueryResult(BaseModel):
    """Exactly one of data / error is set. Never both, never neither."""

    data: Optional[Any] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def exactly_one_side(self):
        if (self.data is None) == (self.error is None):
            raise ValueError("QueryResult needs exactly one of data or error")
        return self

    @classmethod
    def success(cls, data: Any) -> "QueryResult":
        return cls(data=data)

    @classmethod
    def failure(cls, error: str) -> "QueryResult":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None


# =========================
# API
# =========================
class QueryRequest(BaseModel):
    template: str
    params: Dict[str, Any] = {}


class TemplateCatalogResponse(CamelModel):
    templates: List[TemplateName]
    scope: QueryScope
    can_compare_orgs: bool
