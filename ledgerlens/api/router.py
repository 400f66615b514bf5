from fastapi import APIRouter
from ledgerlens.api.endpoints import ai_query

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(ai_query.router)
