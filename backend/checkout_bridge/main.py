"""
Checkout Bridge Backend - FastAPI Application

Bridges the Luxury Cars storefront to Transbank Webpay Plus and Resend.
Keeps pending purchases in memory between the gateway create and commit
calls and evicts abandoned ones on a schedule.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import resource
import time

from .config import Settings, settings as default_settings
from .exceptions import CheckoutError
from .middleware import (
    RateLimitMiddleware,
    RateLimitRule,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from .services.email_service import EmailSender, create_email_sender
from .services.gateway import PaymentGateway, create_gateway
from .services.orchestrator import TransactionOrchestrator
from .services.scheduler import ExpirySweeper
from .services.session_store import PendingPurchaseStore
from .api.transactions import router as transactions_router
from .api.emails import router as emails_router


logger = logging.getLogger(__name__)


AVAILABLE_ENDPOINTS = [
    "GET /api/health",
    "POST /api/create-transaction",
    "POST /api/confirm-transaction",
    "POST /api/send-email",
]

TRANSACTION_PATHS = ["/api/create-transaction", "/api/confirm-transaction"]


def configure_logging(config: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_app(
    config: Optional[Settings] = None,
    gateway: Optional[PaymentGateway] = None,
    email_sender: Optional[EmailSender] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Settings to use (defaults to environment settings)
        gateway: Payment gateway override; built from config when omitted
        email_sender: Email sender override; built from config when omitted
    """
    config = config or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        - Startup: build store, gateway, email sender, orchestrator; start sweeper
        - Shutdown: stop sweeper, wait for receipts, close HTTP clients
        """
        logger.info("Starting checkout bridge backend...")
        logger.info(f"Environment: {config.environment}")
        logger.info(f"Frontend URL: {config.frontend_url}")

        store = PendingPurchaseStore()
        app_gateway = gateway or create_gateway(config)
        app_email_sender = email_sender if email_sender is not None else create_email_sender(config)

        orchestrator = TransactionOrchestrator(
            store=store,
            gateway=app_gateway,
            return_url=config.return_url,
            email_sender=app_email_sender,
        )
        sweeper = ExpirySweeper(
            store,
            ttl=timedelta(minutes=config.session_ttl_minutes),
            interval=timedelta(minutes=config.sweep_interval_minutes),
        )

        app.state.settings = config
        app.state.store = store
        app.state.email_sender = app_email_sender
        app.state.orchestrator = orchestrator
        app.state.sweeper = sweeper
        app.state.started_at = time.monotonic()

        sweeper.start()
        logger.info(
            f"Email service: {'configured' if app_email_sender else 'not configured'}; "
            f"auto-cleanup every {config.sweep_interval_minutes} minutes"
        )
        logger.info("Server startup complete")

        yield

        logger.info("Shutting down checkout bridge backend...")

        try:
            sweeper.shutdown(wait=True)
        except Exception as e:
            logger.error(f"Error during sweeper shutdown: {e}")

        await orchestrator.drain()

        for client in (app_gateway, app_email_sender):
            if client is not None:
                try:
                    await client.aclose()
                except Exception as e:
                    logger.error(f"Error closing {type(client).__name__}: {e}")

        store.clear()
        logger.info("Server closed")

    app = FastAPI(
        title="Checkout Bridge API",
        description="Webpay Plus checkout and receipt delivery for the Luxury Cars storefront",
        version=config.app_version,
        lifespan=lifespan,
    )

    # Middleware runs bottom-up: CORS first, then logging, headers, rate limiting
    app.add_middleware(
        RateLimitMiddleware,
        general=RateLimitRule(
            max_requests=config.rate_limit_max_requests,
            window_seconds=config.rate_limit_window_minutes * 60,
        ),
        strict=RateLimitRule(
            max_requests=config.transaction_rate_limit_max_requests,
            window_seconds=config.rate_limit_window_minutes * 60,
            error="Too many transaction attempts, please try again later.",
        ),
        strict_paths=TRANSACTION_PATHS,
        trusted_proxies=config.trusted_proxies,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware, trusted_proxies=config.trusted_proxies)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    )

    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        """
        Handle checkout errors with the standardized response format.

        Client errors log at WARNING, gateway and email failures at ERROR.
        """
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(f"Checkout error: {exc.error_code} - {exc.message}", extra={"details": exc.details})

        content = exc.to_dict()
        content["timestamp"] = _timestamp()
        if config.is_development and exc.__cause__ is not None:
            content["details"] = {**exc.details, "cause": str(exc.__cause__)}

        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        """
        Catch-all handler for unexpected errors.

        Logs full exception for debugging but returns generic message to client.
        """
        logger.error(f"Unexpected error on {request.method} {request.url.path}: {exc}", exc_info=True)

        return JSONResponse(
            status_code=500,
            content={
                "error_code": "internal_error",
                "message": str(exc) if config.is_development else "Something went wrong",
                "details": {"error_type": type(exc).__name__} if config.is_development else {},
                "timestamp": _timestamp(),
            }
        )

    @app.get("/api/health")
    async def health_check(request: Request):
        """
        Health check endpoint for monitoring and load balancers.

        activeTransactions is the number of purchases awaiting confirmation.
        memory.maxRss is the peak resident set size in bytes.
        """
        return {
            "status": "OK",
            "timestamp": _timestamp(),
            "environment": config.environment,
            "activeTransactions": request.app.state.store.active_count(),
            "uptime": round(time.monotonic() - request.app.state.started_at, 3),
            "memory": {"maxRss": resource.getrusage(resource.RUSAGE_SELF).ru_maxrss * 1024},
            "version": config.app_version,
        }

    app.include_router(transactions_router, prefix="/api", tags=["Transactions"])
    app.include_router(emails_router, prefix="/api", tags=["Email"])

    @app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"], include_in_schema=False)
    async def not_found(request: Request, path: str):
        return JSONResponse(
            status_code=404,
            content={
                "error": "Endpoint not found",
                "message": f"Route {request.method} {request.url.path} not found",
                "availableEndpoints": AVAILABLE_ENDPOINTS,
                "timestamp": _timestamp(),
            }
        )

    return app


configure_logging(default_settings)

app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "checkout_bridge.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.is_development,
        log_level=default_settings.log_level.lower()
    )
