"""API router for v1 endpoints."""

from fastapi import APIRouter

from app.api import (
    analysis,
    appeals,
    audit,
    complaints,
    documents,
    jobs,
    knowledge,
    letters,
    subscriptions,
    time_logs,
)

router = APIRouter()

# Complaint lifecycle
router.include_router(complaints.router, prefix="/complaints", tags=["complaints"])
router.include_router(documents.router, prefix="/documents", tags=["documents"])
router.include_router(analysis.router, prefix="/analysis", tags=["analysis"])
router.include_router(letters.router, prefix="/letters", tags=["letters"])
router.include_router(time_logs.router, prefix="/time", tags=["time"])
router.include_router(appeals.router, prefix="/appeals", tags=["appeals"])

# Knowledge base, precedents and chat
router.include_router(knowledge.router, prefix="/knowledge", tags=["knowledge"])

# Background jobs
router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])

# Billing tiers
router.include_router(subscriptions.router, prefix="/subscriptions", tags=["subscriptions"])

# Admin
router.include_router(audit.router, prefix="/audit", tags=["audit"])
