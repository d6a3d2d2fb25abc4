"""
Database Configuration
SQLAlchemy engine and session management for the job store.
SQLite for local development, PostgreSQL (Cloud SQL) in production.
"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings

logger = logging.getLogger(__name__)

is_sqlite = settings.DATABASE_URL.startswith("sqlite")
is_memory = is_sqlite and settings.DATABASE_URL.rstrip("/") in ("sqlite:", "sqlite:///:memory:")

if is_sqlite:
    # Inline jobs run on background threads, so the connection must be shareable;
    # an in-memory database only exists on a single connection
    engine = create_engine(
        settings.DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if is_memory else None,
    )
else:
    engine = create_engine(
        settings.DATABASE_URL,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db():
    """Create the job store tables on whatever engine sessions are bound to."""
    try:
        from app.models import Business, CreditEntry, GenerationJob, Asset  # noqa
        Base.metadata.create_all(bind=SessionLocal.kw["bind"])
    except SQLAlchemyError as e:
        # Tables may already exist, or the filesystem may be read-only
        logger.warning(f"Could not create database tables: {e}")
        logger.info("Continuing with existing database...")
