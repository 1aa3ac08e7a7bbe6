"""
Mitgliederverwaltung API - Main Application Entry Point

FastAPI application for the member administration of the Verbindung.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mitgliederverwaltung import __version__
from mitgliederverwaltung.core.config import settings
from mitgliederverwaltung.core.database import init_db
from mitgliederverwaltung.core.logging import configure_logging
from mitgliederverwaltung.keycloak.context import get_keycloak
from mitgliederverwaltung.members.router import router as members_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    configure_logging()
    await init_db()
    yield
    # Shutdown
    await get_keycloak().aclose()


app = FastAPI(
    title=settings.app_name,
    description="API für die Mitgliederverwaltung mit Keycloak-Abgleich",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health Check
@app.get("/health", tags=["system"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


# Include Routers
app.include_router(members_router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("mitgliederverwaltung.main:app", host="0.0.0.0", port=8000, reload=True)
