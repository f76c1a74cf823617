"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthStore is the repository; the _row_to_*
functions are the mappers. Service and route code never touches SQL directly.

Three tables:
  members          -- the member directory (read after a successful OTP check)
  otp_challenges   -- one row per (identity, purpose); UNIQUE enforces it
  otp_rate_buckets -- dispatch counters keyed by (identity, UTC hour)

Concurrency:
  Every state transition that guards a security limit is a single conditional
  UPDATE whose WHERE clause restates the precondition, followed by a rowcount
  check. Two requests racing on the same row cannot both pass: the database
  applies the UPDATEs one at a time and the loser matches zero rows. This is
  what keeps the attempt ceiling and the hourly dispatch ceiling exact under
  parallel submissions.

Timestamps are stored as ISO 8601 UTC strings with fixed microsecond precision,
so lexicographic comparison in SQL matches chronological order.

Security:
  All queries use bound parameters. No f-strings in SQL.
  OTP codes are stored as HMAC digests only (see auth/otp.py).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    case,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import ChallengeStatus, Member, MemberStatus, OTPChallenge, Purpose, Role

logger = logging.getLogger("obog.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_members = Table(
    "members",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("role", String(30), nullable=False, server_default="current"),
    Column("status", String(30), nullable=False, server_default="active"),
    Column("display_name", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("last_login", Text),
)

_challenges = Table(
    "otp_challenges",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identity", String(320), nullable=False),
    Column("purpose", String(30), nullable=False),
    Column("code_digest", String(64), nullable=False),  # HMAC-SHA256 hex
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("attempts", Integer, nullable=False, server_default="0"),
    Column("verified", Integer, nullable=False, server_default="0"),
    Column("status", String(20), nullable=False, server_default="active"),
    UniqueConstraint("identity", "purpose", name="uq_otp_challenge_key"),
)

_buckets = Table(
    "otp_rate_buckets",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identity", String(320), nullable=False),
    Column("hour_key", String(13), nullable=False),  # YYYY-MM-DDTHH (UTC)
    Column("count", Integer, nullable=False, server_default="0"),
    UniqueConstraint("identity", "hour_key", name="uq_otp_rate_bucket"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for members, OTP challenges, and dispatch rate buckets.

    Usage:
        store = AuthStore("sqlite:///:memory:")
        store.create_member(Member(email="a@example.com", role=Role.admin, display_name="A"))
        member = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///obog_auth.db") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    # ------------------------------------------------------------------
    # Member directory
    # ------------------------------------------------------------------

    def create_member(self, member: Member) -> int:
        """Insert a new member and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _members.insert().values(
                    email=member.email.strip().lower(),
                    role=member.role.value,
                    status=member.status.value,
                    display_name=member.display_name,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> Member | None:
        """Look up a member by normalized email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_members.select().where(_members.c.email == email.strip().lower())).fetchone()
        return _row_to_member(row) if row is not None else None

    def list_members(self) -> list[Member]:
        """Return all members ordered by email. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_members.select().order_by(_members.c.email)).fetchall()
        return [_row_to_member(r) for r in rows]

    def set_member_status(self, email: str, status: MemberStatus) -> bool:
        """Change a member's status. Returns False if no member has that email.

        Existing sessions are not revoked; they run out at their own expiry.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _members.update().where(_members.c.email == email.strip().lower()).values(status=status.value)
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, member_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given member."""
        with self.engine.connect() as conn:
            conn.execute(_members.update().where(_members.c.id == member_id).values(last_login=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # OTP challenges
    # ------------------------------------------------------------------

    def replace_challenge(self, challenge: OTPChallenge) -> int:
        """Store a fresh challenge, superseding any prior one for the same key.

        DELETE + INSERT run in one transaction, so readers see either the old
        challenge or the new one, never both and never neither. Two concurrent
        issues for the same key can both pass the DELETE on backends that lock
        rows rather than the database; the loser's INSERT hits the UNIQUE
        constraint and is retried once, superseding the winner.
        """
        try:
            return self._replace_once(challenge)
        except IntegrityError:
            logger.info("Challenge replace raced for %s, retrying", challenge.identity)
            return self._replace_once(challenge)

    def _replace_once(self, challenge: OTPChallenge) -> int:
        with self.engine.connect() as conn:
            conn.execute(
                _challenges.delete().where(
                    (_challenges.c.identity == challenge.identity) & (_challenges.c.purpose == challenge.purpose.value)
                )
            )
            result = conn.execute(
                _challenges.insert().values(
                    identity=challenge.identity,
                    purpose=challenge.purpose.value,
                    code_digest=challenge.code_digest,
                    issued_at=_iso(challenge.issued_at),
                    expires_at=_iso(challenge.expires_at),
                    attempts=challenge.attempts,
                    verified=1 if challenge.verified else 0,
                    status=challenge.status.value,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_challenge(self, identity: str, purpose: Purpose) -> OTPChallenge | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _challenges.select().where(
                    (_challenges.c.identity == identity) & (_challenges.c.purpose == purpose.value)
                )
            ).fetchone()
        return _row_to_challenge(row) if row is not None else None

    def mark_expired(self, challenge_id: int) -> bool:
        """Move an active challenge to expired. Returns True if this call did it."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _challenges.update()
                .where((_challenges.c.id == challenge_id) & (_challenges.c.status == ChallengeStatus.active.value))
                .values(status=ChallengeStatus.expired.value)
            )
            conn.commit()
        return result.rowcount > 0

    def record_failed_attempt(self, challenge_id: int, max_attempts: int) -> bool:
        """Atomically increment attempts on an active, non-exhausted challenge.

        The challenge flips to exhausted in the same statement when the
        increment reaches max_attempts. Returns False when the row was no
        longer active (consumed, expired, or exhausted by a concurrent call).
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _challenges.update()
                .where(
                    (_challenges.c.id == challenge_id)
                    & (_challenges.c.status == ChallengeStatus.active.value)
                    & (_challenges.c.attempts < max_attempts)
                )
                .values(
                    attempts=_challenges.c.attempts + 1,
                    status=case(
                        (_challenges.c.attempts + 1 >= max_attempts, ChallengeStatus.exhausted.value),
                        else_=ChallengeStatus.active.value,
                    ),
                )
            )
            conn.commit()
        return result.rowcount > 0

    def consume_challenge(self, challenge_id: int, max_attempts: int, now: datetime) -> bool:
        """Atomically mark an active, unexpired, non-exhausted challenge consumed.

        Returns True for exactly one caller per challenge.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _challenges.update()
                .where(
                    (_challenges.c.id == challenge_id)
                    & (_challenges.c.status == ChallengeStatus.active.value)
                    & (_challenges.c.attempts < max_attempts)
                    & (_challenges.c.expires_at > _iso(now))
                )
                .values(status=ChallengeStatus.consumed.value, verified=1)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Dispatch rate buckets
    # ------------------------------------------------------------------

    def get_bucket_count(self, identity: str, hour_key: str) -> int:
        with self.engine.connect() as conn:
            count = conn.execute(
                select(_buckets.c.count).where((_buckets.c.identity == identity) & (_buckets.c.hour_key == hour_key))
            ).scalar()
        return count or 0

    def increment_bucket(self, identity: str, hour_key: str, ceiling: int) -> bool:
        """Add one dispatch to the bucket unless it is already at ceiling.

        Returns True if the dispatch was counted, False if the bucket is full.
        A missing bucket is created with count=1. If a concurrent request
        created it first, the INSERT loses on the UNIQUE constraint and the
        conditional UPDATE is retried once.
        """
        if ceiling < 1:
            return False
        if self._conditional_increment(identity, hour_key, ceiling):
            return True
        try:
            with self.engine.connect() as conn:
                conn.execute(_buckets.insert().values(identity=identity, hour_key=hour_key, count=1))
                conn.commit()
            return True
        except IntegrityError:
            return self._conditional_increment(identity, hour_key, ceiling)

    def _conditional_increment(self, identity: str, hour_key: str, ceiling: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _buckets.update()
                .where(
                    (_buckets.c.identity == identity) & (_buckets.c.hour_key == hour_key) & (_buckets.c.count < ceiling)
                )
                .values(count=_buckets.c.count + 1)
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_member(row) -> Member:
    return Member(
        id=row.id,
        email=row.email,
        role=Role(row.role),
        status=MemberStatus(row.status),
        display_name=row.display_name,
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_challenge(row) -> OTPChallenge:
    return OTPChallenge(
        id=row.id,
        identity=row.identity,
        purpose=Purpose(row.purpose),
        code_digest=row.code_digest,
        issued_at=_parse(row.issued_at),
        expires_at=_parse(row.expires_at),
        attempts=row.attempts,
        verified=bool(row.verified),
        status=ChallengeStatus(row.status),
    )
