"""Pydantic schemas for health check responses."""

from typing import Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Service, database and locking status."""

    status: Literal["ok", "degraded"] = Field(default="ok", description="degraded when the database is unreachable")
    environment: str = Field(description="Current app environment (dev or prod)")
    database: Literal["connected", "disconnected"]
    dialect: str = Field(description="Database backend in use (postgresql, sqlite)")
    cross_process_locking: bool = Field(
        description="True when ingestion locks also serialize other worker processes (PostgreSQL advisory locks).",
    )
