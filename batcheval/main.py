"""batcheval FastAPI application."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from batcheval.api.health import router as health_router
from batcheval.api.outcomes import router as outcomes_router
from batcheval.api.sessions import router as sessions_router
from batcheval.config import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="batcheval - Batch Evaluation Service",
    description="Resumable batch scoring of participant submissions with an audit trail",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router, tags=["Health"])
app.include_router(sessions_router, prefix="/v1", tags=["Sessions"])
app.include_router(outcomes_router, prefix="/v1", tags=["Outcomes"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"service": "batcheval", "version": "0.1.0", "docs": "/docs"}
