from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
import os
from dotenv import load_dotenv
from .config.mfa_config import DATASTORE_TIMEOUT_SECONDS
from .models.base import Base

load_dotenv()

# Database configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./authguard.db")
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"


def build_engine(database_url: str = DATABASE_URL, timeout: float = DATASTORE_TIMEOUT_SECONDS):
    """Create an engine whose datastore calls are bounded by ``timeout`` seconds."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=DATABASE_ECHO,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )
    return create_engine(
        database_url,
        echo=DATABASE_ECHO,
        pool_timeout=timeout,
        pool_pre_ping=True,
        connect_args={"connect_timeout": int(timeout)},
    )


# Create engine
engine = build_engine()

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Database dependency for FastAPI"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """Create all database tables"""
    # Import models so they register on Base.metadata
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
