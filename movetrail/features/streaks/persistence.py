"""
movetrail/features/streaks/persistence.py

SQL persistence for streak state, the activity ledger and milestone progress.

Same contract as InMemoryStreakStore. Concurrency relies on the database:
- streak rows are updated with `WHERE version = :expected`
- ledger rows are created with INSERT ... ON CONFLICT DO NOTHING and the
  qualifies flag is only ever flipped false -> true by a conditional UPDATE
- progress rows are guarded by the (user, milestone, earned_date) unique key
"""

from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from movetrail.core.clock import ensure_aware
from movetrail.core.database import (
    get_db_session,
    streak_activity_log,
    user_milestone_progress,
    user_streaks,
)
from movetrail.core.errors import StorageError
from movetrail.core.logging import log_event
from movetrail.models.streak import (
    ActivityLogEntry,
    LedgerWriteResult,
    MilestoneProgress,
    UserStreak,
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_aware(value) if value is not None else None


def _row_to_streak(row) -> UserStreak:
    return UserStreak(
        user_id=row.user_id,
        timezone=row.timezone,
        current_streak=row.current_streak,
        longest_streak=row.longest_streak,
        last_activity_date=row.last_activity_date,
        streak_started_at=_aware(row.streak_started_at),
        shields_available=row.shields_available,
        shields_used_this_week=row.shields_used_this_week,
        shield_week_start=row.shield_week_start,
        total_active_days=row.total_active_days,
        version=row.version,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _row_to_activity(row) -> ActivityLogEntry:
    return ActivityLogEntry(
        user_id=row.user_id,
        activity_date=row.activity_date,
        activity_kind=row.activity_kind,
        activity_value=float(row.activity_value),
        qualifies=bool(row.qualifies),
        source=row.source,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _row_to_progress(row) -> MilestoneProgress:
    return MilestoneProgress(
        progress_id=row.progress_id,
        user_id=row.user_id,
        milestone_id=row.milestone_id,
        earned_at=_aware(row.earned_at),
        earned_date=row.earned_date,
        reward_claimed=bool(row.reward_claimed),
        reward_claimed_at=_aware(row.reward_claimed_at),
        reward_expires_at=_aware(row.reward_expires_at),
    )


def _streak_values(streak: UserStreak) -> Dict[str, Any]:
    return {
        'timezone': streak.timezone,
        'current_streak': streak.current_streak,
        'longest_streak': streak.longest_streak,
        'last_activity_date': streak.last_activity_date,
        'streak_started_at': streak.streak_started_at,
        'shields_available': streak.shields_available,
        'shields_used_this_week': streak.shields_used_this_week,
        'shield_week_start': streak.shield_week_start,
        'total_active_days': streak.total_active_days,
        'updated_at': streak.updated_at,
    }


def _insert_ignore(session, table, values: Dict[str, Any], conflict_columns: List[str]) -> bool:
    """
    Insert a row unless it collides with the given unique key.

    Returns True when this call created the row.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
        return session.execute(stmt).rowcount == 1
    if dialect == "sqlite":
        stmt = sqlite.insert(table).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
        return session.execute(stmt).rowcount == 1

    # Other backends: isolate the insert in a savepoint and treat a key clash as "exists"
    try:
        with session.begin_nested():
            session.execute(insert(table).values(**values))
        return True
    except IntegrityError:
        return False


class SqlStreakStore:
    """Database-backed StreakStore."""

    @contextmanager
    def _session(self, operation: str):
        try:
            with get_db_session() as session:
                yield session
        except SQLAlchemyError as exc:
            log_event(
                "error",
                "streak_store.failure",
                event_type="streak_store.failure",
                error_code="storage_error",
                extra={"operation": operation, "error_type": type(exc).__name__},
            )
            raise StorageError(f"Storage failure during {operation}") from exc

    # --- streak state ---

    def get_streak(self, user_id: str) -> Optional[UserStreak]:
        with self._session("get_streak") as session:
            row = session.execute(
                select(user_streaks).where(user_streaks.c.user_id == user_id)
            ).first()
            return _row_to_streak(row) if row else None

    def create_streak_if_missing(self, streak: UserStreak) -> UserStreak:
        values = _streak_values(streak)
        values['user_id'] = streak.user_id
        values['version'] = streak.version
        values['created_at'] = streak.created_at
        with self._session("create_streak") as session:
            _insert_ignore(session, user_streaks, values, ['user_id'])
            row = session.execute(
                select(user_streaks).where(user_streaks.c.user_id == streak.user_id)
            ).first()
            return _row_to_streak(row)

    def compare_and_swap_streak(self, streak: UserStreak, expected_version: int) -> bool:
        values = _streak_values(streak)
        values['version'] = expected_version + 1
        with self._session("compare_and_swap_streak") as session:
            result = session.execute(
                update(user_streaks)
                .where(and_(
                    user_streaks.c.user_id == streak.user_id,
                    user_streaks.c.version == expected_version,
                ))
                .values(**values)
            )
            return result.rowcount == 1

    # --- activity ledger ---

    def upsert_activity(
        self,
        user_id: str,
        activity_date: date,
        activity_kind: str,
        activity_value: float,
        qualifies: bool,
        source: str,
        now: datetime,
    ) -> LedgerWriteResult:
        key = and_(
            streak_activity_log.c.user_id == user_id,
            streak_activity_log.c.activity_date == activity_date,
        )
        with self._session("upsert_activity") as session:
            created = _insert_ignore(
                session,
                streak_activity_log,
                {
                    'user_id': user_id,
                    'activity_date': activity_date,
                    'activity_kind': activity_kind,
                    'activity_value': activity_value,
                    'qualifies': qualifies,
                    'source': source,
                    'created_at': now,
                    'updated_at': now,
                },
                ['user_id', 'activity_date'],
            )

            was_already_qualifying = False
            if not created:
                if qualifies:
                    # Only one concurrent writer can win the false -> true flip
                    flipped = session.execute(
                        update(streak_activity_log)
                        .where(and_(key, streak_activity_log.c.qualifies == False))  # noqa: E712
                        .values(qualifies=True)
                    ).rowcount
                    was_already_qualifying = flipped == 0
                else:
                    was_already_qualifying = bool(session.execute(
                        select(streak_activity_log.c.qualifies).where(key)
                    ).scalar())

                session.execute(
                    update(streak_activity_log)
                    .where(key)
                    .values(
                        activity_kind=activity_kind,
                        activity_value=activity_value,
                        source=source,
                        updated_at=now,
                    )
                )

            row = session.execute(select(streak_activity_log).where(key)).first()
            return LedgerWriteResult(
                entry=_row_to_activity(row),
                was_already_qualifying=was_already_qualifying,
                created=created,
                report_qualifies=qualifies,
            )

    def get_activity(self, user_id: str, activity_date: date) -> Optional[ActivityLogEntry]:
        with self._session("get_activity") as session:
            row = session.execute(
                select(streak_activity_log).where(and_(
                    streak_activity_log.c.user_id == user_id,
                    streak_activity_log.c.activity_date == activity_date,
                ))
            ).first()
            return _row_to_activity(row) if row else None

    def list_activity(self, user_id: str, limit: int = 30) -> List[ActivityLogEntry]:
        with self._session("list_activity") as session:
            rows = session.execute(
                select(streak_activity_log)
                .where(streak_activity_log.c.user_id == user_id)
                .order_by(streak_activity_log.c.activity_date.desc())
                .limit(limit)
            ).fetchall()
            return [_row_to_activity(row) for row in rows]

    # --- milestone progress ---

    def list_progress(self, user_id: str, milestone_id: Optional[str] = None) -> List[MilestoneProgress]:
        query = select(user_milestone_progress).where(user_milestone_progress.c.user_id == user_id)
        if milestone_id is not None:
            query = query.where(user_milestone_progress.c.milestone_id == milestone_id)
        query = query.order_by(user_milestone_progress.c.earned_at.asc())
        with self._session("list_progress") as session:
            return [_row_to_progress(row) for row in session.execute(query).fetchall()]

    def get_progress(self, progress_id: str) -> Optional[MilestoneProgress]:
        with self._session("get_progress") as session:
            row = session.execute(
                select(user_milestone_progress).where(user_milestone_progress.c.progress_id == progress_id)
            ).first()
            return _row_to_progress(row) if row else None

    def insert_progress(self, progress: MilestoneProgress) -> bool:
        with self._session("insert_progress") as session:
            return _insert_ignore(
                session,
                user_milestone_progress,
                {
                    'progress_id': progress.progress_id,
                    'user_id': progress.user_id,
                    'milestone_id': progress.milestone_id,
                    'earned_at': progress.earned_at,
                    'earned_date': progress.earned_date,
                    'reward_claimed': progress.reward_claimed,
                    'reward_claimed_at': progress.reward_claimed_at,
                    'reward_expires_at': progress.reward_expires_at,
                },
                ['user_id', 'milestone_id', 'earned_date'],
            )

    def mark_progress_claimed(self, progress_id: str, claimed_at: datetime) -> bool:
        with self._session("mark_progress_claimed") as session:
            result = session.execute(
                update(user_milestone_progress)
                .where(and_(
                    user_milestone_progress.c.progress_id == progress_id,
                    user_milestone_progress.c.reward_claimed == False,  # noqa: E712
                ))
                .values(reward_claimed=True, reward_claimed_at=claimed_at)
            )
            return result.rowcount == 1

    def ping(self) -> bool:
        from movetrail.core.database import check_connection

        return check_connection()
