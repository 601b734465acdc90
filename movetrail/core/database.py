"""
Database engine, sessions and table definitions.

The engine is created lazily from TEST_DATABASE_URL, DATABASE_URL or
settings (first one set wins). SQLite URLs get a single shared connection so
`sqlite://` works as a throwaway in-memory database for tests.

Tables:
- user_streaks: one row per user, `version` bumped on every write
- streak_activity_log: one merged row per user per calendar date
- user_milestone_progress: awarded milestone instances
"""
from contextlib import contextmanager
import logging
import os
from typing import Optional

from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    Date,
    DateTime,
    Boolean,
    Numeric,
    Index,
    UniqueConstraint,
    CheckConstraint,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func

from movetrail.core.config import settings

logger = logging.getLogger("movetrail")

metadata = MetaData()

POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_database_url() -> Optional[str]:
    return os.getenv("TEST_DATABASE_URL") or os.getenv("DATABASE_URL") or settings.DATABASE_URL


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        return create_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
    )


def init_engine(database_url: Optional[str] = None) -> Engine:
    """(Re)create the engine and session factory, replacing any previous one."""
    global _engine, _session_factory

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured. Set it in the environment or .env file.")

    _engine = _build_engine(url)
    _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        init_engine()
    return _session_factory


def dispose_engine() -> None:
    """Drop the cached engine so the next call re-reads the URL."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


@contextmanager
def get_db_session():
    """Session that commits on success and rolls back on any exception."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    """Create missing tables; existing ones are left alone."""
    metadata.create_all(bind=get_engine())


def drop_all_tables() -> None:
    """Destructive. Tests and local development only."""
    metadata.drop_all(bind=get_engine())


def check_connection() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database connection check failed: %s", e)
        return False


# One row per user; `version` is bumped on every write for compare-and-swap
user_streaks = Table(
    'user_streaks',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('current_streak', Integer, nullable=False, server_default='0'),
    Column('longest_streak', Integer, nullable=False, server_default='0'),
    Column('last_activity_date', Date, nullable=True),
    Column('streak_started_at', DateTime(timezone=True), nullable=True),
    Column('timezone', String(64), nullable=False, server_default='America/New_York'),
    Column('shields_available', Integer, nullable=False, server_default='1'),
    Column('shields_used_this_week', Integer, nullable=False, server_default='0'),
    Column('shield_week_start', Date, nullable=True),
    Column('total_active_days', Integer, nullable=False, server_default='0'),
    Column('version', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    CheckConstraint('current_streak >= 0 AND longest_streak >= 0', name='ck_user_streaks_positive'),
    CheckConstraint('longest_streak >= current_streak', name='ck_user_streaks_longest_gte_current'),
    CheckConstraint('shields_available >= 0 AND shields_used_this_week >= 0', name='ck_user_streaks_positive_shields'),
    Index('idx_user_streaks_current_streak', 'current_streak'),
    Index('idx_user_streaks_last_activity', 'last_activity_date'),
)

# Daily activity ledger: one merged row per user per calendar date
streak_activity_log = Table(
    'streak_activity_log',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('activity_date', Date, nullable=False),
    Column('activity_kind', String(50), nullable=False),
    Column('activity_value', Numeric(14, 3), nullable=False, server_default='0'),
    Column('qualifies', Boolean, nullable=False, server_default='false'),
    Column('source', String(100), nullable=False, server_default='unknown'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', 'activity_date', name='uq_streak_activity_user_date'),
    Index('idx_streak_activity_user_date', 'user_id', 'activity_date'),
)

# Awarded milestone instances; repeatables are told apart by earned_date
user_milestone_progress = Table(
    'user_milestone_progress',
    metadata,
    Column('progress_id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('milestone_id', String(100), nullable=False),
    Column('earned_at', DateTime(timezone=True), nullable=False),
    Column('earned_date', Date, nullable=False),
    Column('reward_claimed', Boolean, nullable=False, server_default='false'),
    Column('reward_claimed_at', DateTime(timezone=True), nullable=True),
    Column('reward_expires_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', 'milestone_id', 'earned_date', name='uq_milestone_progress_user_milestone_day'),
    Index('idx_milestone_progress_user_milestone', 'user_id', 'milestone_id'),
    Index('idx_milestone_progress_earned_at', 'earned_at'),
)
