import pytest
from pydantic import ValidationError

from ledgerlens.core.schemas import AIQueryContext, QueryScope
from ledgerlens.core.query.errors import AccessDenied, MissingOrgScope
from ledgerlens.core.query.permissions import (
    can_access_org,
    can_query_cross_org,
    enforce_org_scope,
    require_cross_org,
)


def test_org_context_only_reaches_its_own_org():
    """Org scope: access is true only for the single allowed org"""
    context = AIQueryContext.for_org("orgA", user_id="u1")

    assert can_access_org(context, "orgA") is True
    assert can_access_org(context, "orgB") is False
    assert can_access_org(context, "") is False


def test_global_context_reaches_every_org():
    """Global scope: access is always true"""
    context = AIQueryContext.for_superuser(user_id="root")

    for org_id in ("orgA", "orgB", "anything"):
        assert can_access_org(context, org_id) is True


def test_cross_org_capability_follows_context():
    assert can_query_cross_org(AIQueryContext.for_superuser(user_id="root")) is True
    assert can_query_cross_org(AIQueryContext.for_org("orgA", user_id="u1")) is False


def test_enforce_org_scope_returns_requested_org_when_allowed():
    context = AIQueryContext.for_org("orgA", user_id="u1")
    assert enforce_org_scope(context, "orgA") == "orgA"


def test_enforce_org_scope_denies_foreign_org():
    context = AIQueryContext.for_org("orgA", user_id="u1")

    with pytest.raises(AccessDenied) as exc_info:
        enforce_org_scope(context, "orgB")
    assert exc_info.value.message == "Access denied"


def test_enforce_org_scope_defaults_to_single_allowed_org():
    context = AIQueryContext.for_org("orgA", user_id="u1")
    assert enforce_org_scope(context) == "orgA"


def test_enforce_org_scope_global_falls_back_to_active_org():
    """Super users without an explicit org query the org they have open"""
    context = AIQueryContext.for_superuser(user_id="root", active_org_id="orgB")
    assert enforce_org_scope(context) == "orgB"


def test_enforce_org_scope_global_without_active_org_fails():
    context = AIQueryContext.for_superuser(user_id="root")

    with pytest.raises(MissingOrgScope) as exc_info:
        enforce_org_scope(context)
    assert exc_info.value.message == "No organization specified"


def test_require_cross_org_rejects_org_users():
    with pytest.raises(AccessDenied) as exc_info:
        require_cross_org(AIQueryContext.for_org("orgA", user_id="u1"))
    assert exc_info.value.message == "Cross-org queries require super user access"


def test_context_shape_is_enforced():
    """Org scope needs exactly one org and no cross-org; global the opposite"""
    with pytest.raises(ValidationError):
        AIQueryContext(
            scope=QueryScope.ORG,
            allowed_org_ids=frozenset({"a", "b"}),
            can_compare_orgs=False,
            user_id="u1",
        )
    with pytest.raises(ValidationError):
        AIQueryContext(
            scope=QueryScope.ORG,
            allowed_org_ids=frozenset({"a"}),
            can_compare_orgs=True,
            user_id="u1",
        )
    with pytest.raises(ValidationError):
        AIQueryContext(
            scope=QueryScope.GLOBAL,
            allowed_org_ids=frozenset({"a"}),
            can_compare_orgs=True,
            user_id="root",
        )


def test_context_is_immutable():
    context = AIQueryContext.for_org("orgA", user_id="u1")

    with pytest.raises(ValidationError):
        context.scope = QueryScope.GLOBAL
