"""
Point reads and writes against the venue tables.

Most functions are a single lookup or a single guarded write, wrapped in
``store_call`` so connection failures are retried and then surfaced as
StoreUnavailable. consume_token, lock_session and put_session run inside a
transaction owned by the caller, which commits and retries as a unit.
Nothing here issues bulk queries or joins.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from venue_presence.core.errors import store_call
from venue_presence.models.entry_token import EntryToken
from venue_presence.models.location_sample import LocationSample
from venue_presence.models.presence_session import PresenceSession
from venue_presence.models.security_log import SecurityLogEntry
from venue_presence.models.venue import Venue


# ---------- venues ----------

@store_call
def get_venue(db: Session, venue_id: str) -> Optional[Venue]:
    return db.get(Venue, venue_id)


# ---------- entry tokens ----------

@store_call
def save_token(db: Session, token: EntryToken) -> EntryToken:
    db.add(token)
    db.commit()
    return token


@store_call
def get_token(db: Session, nonce: str) -> Optional[EntryToken]:
    return db.get(EntryToken, nonce)


def consume_token(db: Session, nonce: str, now: datetime) -> bool:
    """
    Flip consumed false -> true in one conditional UPDATE inside the caller's
    transaction. Exactly one committed caller sees True for a given nonce.
    Not retried or committed here: the caller's transaction is the retry unit.
    """
    result = db.execute(
        update(EntryToken)
        .where(EntryToken.nonce == nonce, EntryToken.consumed.is_(False))
        .values(consumed=True, consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


@store_call
def purge_expired_tokens(db: Session, now: datetime) -> int:
    result = db.execute(
        delete(EntryToken)
        .where(EntryToken.expires_at < now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount


# ---------- presence sessions ----------

@store_call
def get_session(db: Session, venue_id: str, user_id: str) -> Optional[PresenceSession]:
    return db.get(PresenceSession, (venue_id, user_id))


def lock_session(db: Session, venue_id: str, user_id: str) -> Optional[PresenceSession]:
    """
    Load a session row with FOR UPDATE inside the caller's transaction.
    Not retried on its own: the caller's transaction is the retry unit.
    """
    return db.execute(
        select(PresenceSession)
        .where(PresenceSession.venue_id == venue_id, PresenceSession.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def put_session(db: Session, session: PresenceSession) -> PresenceSession:
    """Create or overwrite the session for (venue, user); caller commits."""
    return db.merge(session)


# ---------- location samples ----------

@store_call
def recent_samples(db: Session, user_id: str, limit: int) -> List[LocationSample]:
    # arrival order; captured_at comes from the device clock
    rows = db.execute(
        select(LocationSample)
        .where(LocationSample.user_id == user_id)
        .order_by(LocationSample.id.desc())
        .limit(limit)
    ).scalars().all()
    return list(rows)


@store_call
def record_sample(db: Session, sample: LocationSample, keep: int) -> None:
    db.add(sample)
    db.flush()

    stale_ids = db.execute(
        select(LocationSample.id)
        .where(LocationSample.user_id == sample.user_id)
        .order_by(LocationSample.id.desc())
        .offset(keep)
    ).scalars().all()

    if stale_ids:
        db.execute(
            delete(LocationSample)
            .where(LocationSample.id.in_(stale_ids))
            .execution_options(synchronize_session=False)
        )
    db.commit()


# ---------- security log ----------

@store_call
def append_audit_entry(db: Session, entry: SecurityLogEntry) -> None:
    db.add(entry)
    db.commit()
