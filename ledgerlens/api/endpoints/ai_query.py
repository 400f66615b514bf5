import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from ledgerlens.core import schemas
from ledgerlens.core.security import get_query_context
from ledgerlens.core.query.catalog import get_available_templates, describe_templates
from ledgerlens.core.query.dispatcher import execute_query, get_binding
from ledgerlens.core.query.errors import QueryError
from ledgerlens.core.query.permissions import enforce_org_scope
from ledgerlens.core.query.store import Store, get_store

router = APIRouter(prefix="/ai/query", tags=["AI Query"])

context_dep = Annotated[schemas.AIQueryContext, Depends(get_query_context)]
store_dep = Annotated[Store, Depends(get_store)]


@router.get(
    "/templates",
    response_model=schemas.TemplateCatalogResponse,
    response_model_by_alias=True,
)
async def list_templates(context: context_dep):
    """Templates the current user may run."""
    return schemas.TemplateCatalogResponse(
        templates=get_available_templates(context),
        scope=context.scope,
        can_compare_orgs=context.can_compare_orgs,
    )


@router.get("/catalog")
async def template_catalog(context: context_dep):
    """Templates with descriptions and parameter schemas, for prompt building."""
    return {"templates": describe_templates(context)}


@router.post("")
async def run_query(
    request: schemas.QueryRequest, context: context_dep, store: store_dep
):
    """
    Execute one pre-defined query template.
    A missing orgId is filled in from the caller's scope before execution.
    """
    available = {t.value for t in get_available_templates(context)}
    if request.template not in available:
        raise HTTPException(
            status.HTTP_403_FORBIDDEN,
            f"Query template '{request.template}' is not available",
        )

    params = dict(request.params)
    if not get_binding(request.template).cross_org:
        snake_org_id = params.pop("org_id", None)
        requested = params.pop("orgId", None) or snake_org_id
        try:
            params["orgId"] = enforce_org_scope(context, requested)
        except QueryError as error:
            logging.warning(
                f"[User {context.user_id}] org scope rejected: {error.message}"
            )
            raise HTTPException(status.HTTP_403_FORBIDDEN, error.message)

    result = await execute_query(context, request.template, params, store=store)
    if not result.ok:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, result.error)

    return {"data": result.data.model_dump(mode="json", by_alias=True)}
