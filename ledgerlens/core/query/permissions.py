"""
Permission checks for template queries.

Pure functions over an AIQueryContext. Every executor calls one of these
before touching the store, even when the caller already checked.
"""

from typing import Optional

from ledgerlens.core.schemas import AIQueryContext, QueryScope
from ledgerlens.core.query.errors import (
    AccessDenied,
    MissingOrgScope,
    CROSS_ORG_DENIED,
)


def can_access_org(context: AIQueryContext, org_id: str) -> bool:
    """Super users see every org; everyone else only their own."""
    if context.scope == QueryScope.GLOBAL:
        return True
    return org_id in (context.allowed_org_ids or frozenset())


def can_query_cross_org(context: AIQueryContext) -> bool:
    return context.can_compare_orgs


def enforce_org_scope(
    context: AIQueryContext, requested_org_id: Optional[str] = None
) -> str:
    """
    Resolve the org a query runs against.

    Args:
        context: Caller's query context
        requested_org_id: Org named by the caller, if any

    Returns:
        The org id to query

    Raises:
        AccessDenied: requested org is outside the caller's scope
        MissingOrgScope: nothing requested and no default org to fall back on
    """
    if requested_org_id:
        if not can_access_org(context, requested_org_id):
            raise AccessDenied()
        return requested_org_id

    # Regular users have exactly one org
    if context.allowed_org_ids:
        return next(iter(context.allowed_org_ids))

    # Super users fall back to the org they are currently looking at
    if context.scope == QueryScope.GLOBAL and context.active_org_id:
        return context.active_org_id

    raise MissingOrgScope()


def require_cross_org(context: AIQueryContext) -> None:
    if not can_query_cross_org(context):
        raise AccessDenied(CROSS_ORG_DENIED)
