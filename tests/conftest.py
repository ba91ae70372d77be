"""
Pytest fixtures: a fresh file-backed SQLite database per test.
"""
from __future__ import annotations

import datetime as dt

import pytest

from creditgate.balance import BalanceProjector
from creditgate.credits import CreditService
from creditgate.db import init_db, make_engine, make_session_factory
from creditgate.models import EntryStatus, LedgerEntry
from creditgate.referrals import ReferralService


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'credits.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def credits(session_factory) -> CreditService:
    return CreditService(session_factory, daily_cap=50, starter_credits=0)


@pytest.fixture
def projector(session_factory) -> BalanceProjector:
    return BalanceProjector(session_factory)


@pytest.fixture
def referrals(credits) -> ReferralService:
    return ReferralService(credits, referrer_bonus=50, referred_bonus=25)


@pytest.fixture
def fund(credits):
    """Give a user credits through the grant path."""
    def _fund(user_id: str, amount: int) -> int:
        return credits.grant(user_id, amount, reason="test funding").new_balance
    return _fund


@pytest.fixture
def add_entry(session_factory):
    """Insert a raw ledger row, e.g. a backdated one."""
    def _add(
        user_id: str,
        request_id: str,
        amount: int,
        status: str = EntryStatus.COMMITTED,
        action: str = "image.gen",
        created_at: dt.datetime | None = None,
    ) -> None:
        with session_factory() as db:
            entry = LedgerEntry(
                user_id=user_id,
                request_id=request_id,
                action=action,
                amount=amount,
                status=status,
                meta={},
            )
            if created_at is not None:
                entry.created_at = created_at
                entry.updated_at = created_at
            db.add(entry)
            db.commit()
    return _add
