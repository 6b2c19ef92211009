import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.db.neo4j_connector import close_driver
from app.services.ingest_service import wait_idle

# Routers
from app.api.routers.ingest import router as ingest_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Let a running ingest finish, then close the Neo4j driver on shutdown."""
    try:
        yield
    finally:
        await wait_idle()
        close_driver()


app = FastAPI(title="Catalog Ingestion Service", version="0.1", lifespan=lifespan)

app.include_router(ingest_router)
