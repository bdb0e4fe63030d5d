"""
Kaching - Main Application
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .dependencies import close_dependencies, init_dependencies
from .errors import register_error_handlers
from .routes import (
    auth_router, invitations_router, shopee_callback_router, shopee_router,
    shops_router, team_router, webhooks_router
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info(f"Starting Kaching ({settings.environment})...")
    if not settings.shopee_configured:
        logger.warning("Shopee partner credentials are not set; Shopee features are disabled")
    await init_dependencies()
    logger.info("Application ready")
    yield
    logger.info("Shutting down...")
    await close_dependencies()


# Create app
app = FastAPI(
    title="Kaching",
    description="Multi-tenant back office for marketplace sellers",
    version="1.0.0",
    lifespan=lifespan
)

register_error_handlers(app)

# Include routers
app.include_router(auth_router)
app.include_router(shops_router)
app.include_router(team_router)
app.include_router(invitations_router)
app.include_router(shopee_router)
app.include_router(shopee_callback_router)
app.include_router(webhooks_router)


@app.get("/health")
async def health():
    """Health check endpoint (no auth required)."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "kaching.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development"
    )
