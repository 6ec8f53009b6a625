import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ghostbank.config import get_settings
from ghostbank.deps import build_services
from ghostbank.logging_config import setup_logging
from ghostbank.api.auth import router as auth_router
from ghostbank.api.wallet import router as wallet_router
from ghostbank.api.deposits import router as deposits_router

logger = logging.getLogger("ghostbank.main")

app = FastAPI(
    title="GhostBank API",
    description="Telegram-verified wallet funded by PIX",
    version="0.1.0"
)


# Lifecycle events
@app.on_event("startup")
async def startup_event():
    """Build services, restore the last session and reach the bot."""
    services = getattr(app.state, "services", None)
    if services is None:
        services = build_services(get_settings())
        app.state.services = services
    setup_logging(services.settings.log_level)

    user = await services.accounts.restore(services.session)
    if user:
        logger.info(f"Restored session for {user.handle}")

    await services.auth_flow.initialize()
    logger.info("GhostBank ready")


@app.on_event("shutdown")
async def shutdown_event():
    """Cancel running flows and close HTTP clients."""
    services = getattr(app.state, "services", None)
    if services is not None:
        await services.shutdown()
    logger.info("GhostBank stopped")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    settings = get_settings()
    return {
        "status": "ok",
        "environment": settings.environment,
        "version": "0.1.0"
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "GhostBank API",
        "docs": "/docs"
    }


# Include routers
app.include_router(auth_router)
app.include_router(wallet_router)
app.include_router(deposits_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
