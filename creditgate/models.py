# creditgate/models.py
from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    String,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base


Base = declarative_base()


# -------------------------
# Time helpers
# -------------------------
def now_utc() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def utc_day_bounds(at: dt.datetime | None = None) -> tuple[dt.datetime, dt.datetime]:
    """[start, end) of the UTC calendar day containing ``at``."""
    at = at or now_utc()
    if at.tzinfo is None:
        at = at.replace(tzinfo=dt.timezone.utc)
    start = at.astimezone(dt.timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + dt.timedelta(days=1)


def _uuid() -> str:
    return str(uuid.uuid4())


# -------------------------
# Status / action tags
# -------------------------
class EntryStatus:
    RESERVED = "reserved"
    COMMITTED = "committed"
    REFUNDED = "refunded"
    GRANTED = "granted"

    TERMINAL = frozenset({COMMITTED, REFUNDED, GRANTED})
    # statuses that count toward balance
    SETTLED = (COMMITTED, GRANTED)
    # statuses that count toward today's spend
    DEBITS = (RESERVED, COMMITTED)


class Disposition:
    COMMIT = "commit"
    REFUND = "refund"

    ALL = frozenset({COMMIT, REFUND})
    TARGET_STATUS = {COMMIT: EntryStatus.COMMITTED, REFUND: EntryStatus.REFUNDED}


class Action:
    REFERRAL_REFERRER = "referral.referrer"
    REFERRAL_NEW = "referral.new"
    ADMIN_GRANT = "admin.grant"
    STARTER_GRANT = "starter.grant"


# -------------------------
# CREDIT ACCOUNT (per-user lock anchor)
# -------------------------
class CreditAccount(Base):
    __tablename__ = "credit_accounts"

    # no balance column: balance is always derived from ledger_entries
    user_id = Column(String(64), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)


# -------------------------
# LEDGER ENTRY (append-only)
# -------------------------
class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id = Column(String(36), primary_key=True, default=_uuid)

    user_id = Column(String(64), nullable=False, index=True)
    request_id = Column(String(128), nullable=False, unique=True)

    action = Column(String(64), nullable=False)
    amount = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False)

    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry {self.request_id} user={self.user_id} "
            f"{self.action} {self.amount:+d} {self.status}>"
        )


Index("ix_ledger_user_status", LedgerEntry.user_id, LedgerEntry.status)
Index("ix_ledger_user_created", LedgerEntry.user_id, LedgerEntry.created_at)


# -------------------------
# REFERRAL SIGNUP
# -------------------------
class ReferralSignup(Base):
    __tablename__ = "referral_signups"

    id = Column(String(36), primary_key=True, default=_uuid)
    referrer_user_id = Column(String(64), nullable=False, index=True)
    referred_user_id = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)

    # one signup per referred user; implies (referrer, referred) uniqueness
    __table_args__ = (
        UniqueConstraint("referred_user_id", name="uq_referral_referred"),
    )
