# app/main.py
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import FileResponse

import config
from claim_routes import router as claim_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

INDEX_HTML = Path(__file__).resolve().parent / "static" / "index.html"


@asynccontextmanager
async def lifespan(app):
    indexer_task = None
    if config.INDEXER_ENABLED and config.REGISTRY_BACKEND == "web3":
        from chain.indexer import run_indexer
        indexer_task = asyncio.create_task(run_indexer())
        logger.info("ClaimSubmitted indexer started")
    yield
    if indexer_task is not None:
        indexer_task.cancel()
        try:
            await indexer_task
        except asyncio.CancelledError:
            pass
        logger.info("ClaimSubmitted indexer stopped")


app = FastAPI(title="Tweet Claims API", version="0.1.0", lifespan=lifespan)
app.include_router(claim_router)


@app.get("/", include_in_schema=False)
def index():
    return FileResponse(INDEX_HTML)


@app.get("/healthz")
def healthz():
    return {"ok": "true"}


@app.get("/api/contracts")
def get_contracts():
    return {
        "chain_id": config.CHAIN_ID,
        "backend": config.REGISTRY_BACKEND,
        "TwitterVerification": config.TWITTER_VERIFICATION_ADDRESS.lower(),
        "OptimisticOracleV3": config.OPTIMISTIC_ORACLE_ADDRESS.lower(),
    }
