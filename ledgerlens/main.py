import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from ledgerlens.core.database import engine
from ledgerlens.api.router import api_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# Close the engine once everything is done and close all the sessions
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("LedgerLens query engine starting")
    yield
    await engine.dispose()


app = FastAPI(title="LedgerLens AI Query API", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": "Welcome to the LedgerLens AI Query API"}
