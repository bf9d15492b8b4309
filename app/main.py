import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError

from app.config import settings
from app.database import check_db_connection, init_db
from app.utils.exceptions import AppException
from app.middleware.error_handler import (
    app_exception_handler,
    validation_exception_handler,
    integrity_error_handler,
    database_unavailable_handler,
    generic_exception_handler,
)

from app.api.v1 import auth
from app.api.v1 import bookings
from app.api.v1 import drivers
from app.api.v1 import vehicles

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="Movers Taxi dispatch API: driver locations, nearest-driver ranking and booking assignment",
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        openapi_url="/openapi.json",
    )

    # ─── CORS ─────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ─── Exception Handlers ───────────────────────────────────────────────────
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(OperationalError, database_unavailable_handler)
    app.add_exception_handler(PoolTimeoutError, database_unavailable_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # ─── Routers ──────────────────────────────────────────────────────────────
    PREFIX = "/api/v1"
    app.include_router(auth.router,     prefix=PREFIX, tags=["Auth"])
    app.include_router(bookings.router, prefix=PREFIX, tags=["Bookings"])
    app.include_router(drivers.router,  prefix=PREFIX, tags=["Drivers"])
    app.include_router(vehicles.router, prefix=PREFIX, tags=["Vehicles"])

    # ─── Startup ──────────────────────────────────────────────────────────────
    @app.on_event("startup")
    def on_startup():
        ok = check_db_connection()
        logger.info("DB connected (core1, core2)" if ok else "DB connection FAILED")
        if ok:
            init_db()

    # ─── Health ───────────────────────────────────────────────────────────────
    @app.get("/health", tags=["Health"])
    def health():
        return {"status": "ok", "app": settings.APP_NAME, "version": "1.0.0"}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host=settings.APP_HOST, port=settings.APP_PORT,
                reload=settings.is_development)
