import os
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .db import Base, engine
from .logging import setup_logging, RequestIdMiddleware
from .services.errors import MarketplaceError
from .auth.router import router as auth_router
from .routes.dealerships import router as dealerships_router, admin_router as admin_dealerships_router
from .routes.realtime import router as realtime_router
from .routes.dealer import router as dealer_router
from .routes.cars import router as cars_router
from .routes.showrooms import router as showrooms_router
from .routes.favorites import router as favorites_router
from .routes.reports import router as reports_router
from .routes.inbox import router as inbox_router, contact_router
from .routes.catalog import router as catalog_router, admin_router as admin_catalog_router
from .routes.analytics import router as analytics_router, admin_router as admin_analytics_router
from .routes.admin import router as admin_router
from .routes.storage import router as storage_router
from .routes.country import router as country_router


log = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.exception_handler(MarketplaceError)
    async def _marketplace_error(request: Request, exc: MarketplaceError):
        log.info("request_rejected", path=request.url.path, status=exc.status_code, error=type(exc).__name__, detail=exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    # Routers
    app.include_router(auth_router)
    app.include_router(dealerships_router)
    app.include_router(admin_dealerships_router)
    app.include_router(realtime_router)
    app.include_router(dealer_router)
    app.include_router(cars_router)
    app.include_router(showrooms_router)
    app.include_router(favorites_router)
    app.include_router(reports_router)
    app.include_router(inbox_router)
    app.include_router(contact_router)
    app.include_router(catalog_router)
    app.include_router(admin_catalog_router)
    app.include_router(analytics_router)
    app.include_router(admin_analytics_router)
    app.include_router(admin_router)
    app.include_router(storage_router)

    @app.get("/health")
    def health():
        return {"status": "ok", "environment": settings.environment}

    # Metrics
    Instrumentator().instrument(app).expose(app)

    # Country-scoped aliases last: /{country_code}/... must not shadow fixed prefixes
    app.include_router(country_router)

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            log.info("database_tables_ready")
        log.info("startup_complete", app=settings.app_name, storage=settings.storage_provider)

    return app


app = create_app()
