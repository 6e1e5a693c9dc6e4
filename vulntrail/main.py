"""ASGI app: routers, CORS and the process-wide ingest orchestrator.

Run with `uvicorn vulntrail.main:app`.
"""

from dotenv import load_dotenv

load_dotenv()

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vulntrail.api.v1 import router as v1_router
from vulntrail.core.config import settings
from vulntrail.core.database import SessionLocal
from vulntrail.services.ingest import IngestionOrchestrator
from vulntrail.services.operations import OperationRegistry

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)

app = FastAPI(
    title="vulntrail API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.APP_ENV == "dev" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One orchestrator per process: its per-account locks must be shared by all requests.
app.state.orchestrator = IngestionOrchestrator(SessionLocal, settings)
app.state.operations = OperationRegistry()

app.include_router(v1_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "vulntrail", "api": settings.API_V1_PREFIX, "docs": "/docs"}
