from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import QueuePool
from app.config import settings
import logging

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    """Driver-level timeouts so no query or connect attempt hangs forever."""
    if url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": settings.DATABASE_CONNECT_TIMEOUT}
    if url.startswith("postgresql"):
        return {"connect_timeout": settings.DATABASE_CONNECT_TIMEOUT}
    if url.startswith("mysql"):
        return {
            "connect_timeout": settings.DATABASE_CONNECT_TIMEOUT,
            "read_timeout":    settings.DATABASE_CONNECT_TIMEOUT,
            "write_timeout":   settings.DATABASE_CONNECT_TIMEOUT,
        }
    return {}


def _make_engine(url: str) -> Engine:
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_timeout=settings.DATABASE_POOL_TIMEOUT,
        pool_pre_ping=True,
        echo=settings.DATABASE_ECHO,
        connect_args=_connect_args(url),
    )


# ─── Engines ───────────────────────────────────────────────────────────────────
# Two independent stores. No transaction ever spans both.
core1_engine = _make_engine(settings.CORE1_DATABASE_URL)
core2_engine = _make_engine(settings.CORE2_DATABASE_URL)


# ─── Session Factories ─────────────────────────────────────────────────────────
Core1Session = sessionmaker(
    bind=core1_engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)

Core2Session = sessionmaker(
    bind=core2_engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


# ─── Base Models ───────────────────────────────────────────────────────────────
class Core1Base(DeclarativeBase):
    """Operational entities: drivers, vehicles, assignment history."""
    pass


class Core2Base(DeclarativeBase):
    """Account and booking entities: users, bookings, payments, audit log."""
    pass


# ─── Dependency Injection ──────────────────────────────────────────────────────
def get_core1_db():
    """
    FastAPI dependency that provides a core1 session per request.

    Usage:
        @router.get("/drivers")
        def list_drivers(core1: Session = Depends(get_core1_db)):
            ...
    """
    db = Core1Session()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_core2_db():
    """FastAPI dependency that provides a core2 session per request."""
    db = Core2Session()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# ─── Lifecycle ─────────────────────────────────────────────────────────────────
def init_db() -> None:
    """Create tables on both stores."""
    import app.models  # noqa: F401  registers models on both metadatas

    Core1Base.metadata.create_all(bind=core1_engine)
    Core2Base.metadata.create_all(bind=core2_engine)


def check_db_connection() -> bool:
    """Verify both stores are reachable. Used at startup."""
    ok = True
    for name, engine in (("core1", core1_engine), ("core2", core2_engine)):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Database connection failed ({name}): {e}")
            ok = False
    return ok
