"""
Route registration for the reportwatch API.
"""

from fastapi import FastAPI

from reportwatch.routes import (
    incidents,
    entities,
    admin,
)


def register_routes(app: FastAPI) -> None:
    """Register all route modules with the FastAPI app."""
    app.include_router(incidents.router)
    app.include_router(entities.router)
    app.include_router(admin.router)
