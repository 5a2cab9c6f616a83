"""API v1 aggregated router.

All v1 endpoints are registered here and mounted under /api/v1 in main.py.
"""

from fastapi import APIRouter

from api.routes import events, executions, health, templates, workflows

api_v1_router = APIRouter()

# Health (no auth required)
api_v1_router.include_router(
    health.router,
    tags=["Health"],
)

# Workflows
api_v1_router.include_router(
    workflows.router,
    prefix="/workflows",
    tags=["Workflows"],
)

# Executions
api_v1_router.include_router(
    executions.router,
    prefix="/executions",
    tags=["Executions"],
)

# Template gallery
api_v1_router.include_router(
    templates.router,
    prefix="/templates",
    tags=["Templates"],
)

# Record events from the CRM write path
api_v1_router.include_router(
    events.router,
    prefix="/events",
    tags=["Events"],
)
