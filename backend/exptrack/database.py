"""Database connection and session management."""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator
import structlog

from exptrack.config import get_settings

settings = get_settings()
logger = structlog.get_logger()

FALLBACK_DATABASE_URL = "sqlite:///./exptrack.db"

database_url = settings.database_url
if not database_url:
    logger.warning(
        "database_url_missing",
        fallback=FALLBACK_DATABASE_URL,
        hint="Set DATABASE_URL in the environment or .env file"
    )
    database_url = FALLBACK_DATABASE_URL

engine_kwargs = {"pool_pre_ping": True, "echo": settings.debug}
if database_url.startswith("sqlite"):
    # Sessions are handed across the threadpool used for sync dependencies
    engine_kwargs["connect_args"] = {"check_same_thread": False}

# Create database engine
engine = create_engine(database_url, **engine_kwargs)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.

    Usage:
        @router.get("/experiments")
        def list_experiments(db: Session = Depends(get_db)):
            return db.query(Experiment).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
