from typing import Dict, Any, List

from ledgerlens.core.schemas import AIQueryContext, TemplateName
from ledgerlens.core.query.dispatcher import TEMPLATE_REGISTRY
from ledgerlens.core.query.permissions import can_query_cross_org

# Order matters: this is the order the assistant sees them in
ORG_SCOPED_TEMPLATES = (
    TemplateName.CURRENT_PRICE,
    TemplateName.PRICE_AT_DATE,
    TemplateName.PRICE_HISTORY,
    TemplateName.TOP_PRICE_CHANGES,
    TemplateName.MONTHLY_EXPENSES,
    TemplateName.EXPENSES_BY_CATEGORY,
    TemplateName.TOP_VENDORS,
    TemplateName.SEARCH_ITEMS,
    TemplateName.RECURRING_TEMPLATES,
    TemplateName.RECURRING_EXPENSE_HISTORY,
)

CROSS_ORG_TEMPLATES = (
    TemplateName.CROSS_ORG_ITEM_PRICES,
    TemplateName.CROSS_ORG_SPENDING,
)


def get_available_templates(context: AIQueryContext) -> List[TemplateName]:
    """Templates this caller may run. Cross-org ones only for super users."""
    if can_query_cross_org(context):
        return [*ORG_SCOPED_TEMPLATES, *CROSS_ORG_TEMPLATES]
    return list(ORG_SCOPED_TEMPLATES)


def describe_templates(context: AIQueryContext) -> List[Dict[str, Any]]:
    """
    Catalog entries for prompt construction.

    Example:
        [{"name": "current_price",
          "description": "Latest recorded price of one inventory item.",
          "params": {...JSON schema...}}]
    """
    entries = []
    for name in get_available_templates(context):
        binding = TEMPLATE_REGISTRY[name]
        entries.append(
            {
                "name": name.value,
                "description": binding.description,
                "params": binding.params_model.model_json_schema(by_alias=True),
            }
        )
    return entries
