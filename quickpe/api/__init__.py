"""
QuickPe API Application Factory
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import get_config
from ..errors import WalletError
from ..logging_config import get_logger, log_action
from .users import router as users_router
from .account import router as account_router
from .money_requests import router as money_requests_router
from .notifications import router as notifications_router
from .audit import router as audit_router
from .analytics import router as analytics_router


logger = get_logger("quickpe.api")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    config = get_config()
    app = FastAPI(
        title="QuickPe Wallet API",
        description="Digital wallet with atomic peer-to-peer transfers and money requests",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in config.cors_origins.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WalletError)
    async def wallet_error_handler(request: Request, exc: WalletError):
        log_action(
            logger, "warning", exc.message,
            action="request_failed", resource=request.url.path,
            extra={"code": exc.code, "status": exc.status_code}
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Internal server error", "code": "INTERNAL_ERROR"}
        )

    app.include_router(users_router, prefix="/api/v1/user", tags=["User"])
    app.include_router(account_router, prefix="/api/v1/account", tags=["Account"])
    app.include_router(money_requests_router, prefix="/api/v1/money-requests", tags=["Money Requests"])
    app.include_router(notifications_router, prefix="/api/v1/notifications", tags=["Notifications"])
    app.include_router(audit_router, prefix="/api/v1/audit", tags=["Audit"])
    app.include_router(analytics_router, prefix="/api/v1/analytics", tags=["Analytics"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "quickpe_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        return {
            "name": "QuickPe Wallet API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "user": "/api/v1/user",
                "account": "/api/v1/account",
                "money_requests": "/api/v1/money-requests",
                "notifications": "/api/v1/notifications",
                "audit": "/api/v1/audit",
                "analytics": "/api/v1/analytics",
            }
        }

    return app
