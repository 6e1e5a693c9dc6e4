"""API v1 routes."""

from fastapi import APIRouter

from vulntrail.api.v1 import findings, fixed, health, reports, upload

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(upload.router, prefix="/uploads", tags=["uploads"])
router.include_router(findings.router, prefix="/findings", tags=["findings"])
router.include_router(fixed.router, prefix="/fixed", tags=["fixed"])
router.include_router(reports.router, prefix="/reports", tags=["reports"])
