from __future__ import annotations

import pytest
from sqlalchemy import func, select

from creditgate.errors import SelfReferral
from creditgate.models import Action, LedgerEntry, ReferralSignup


def _count(session_factory, stmt):
    with session_factory() as db:
        return db.execute(stmt).scalar_one()


def test_referral_awarded_exactly_once(referrals, session_factory, projector):
    first = referrals.process_referral("ref", "newbie")
    second = referrals.process_referral("ref", "newbie")

    assert first.awarded is True
    assert (first.referrer_bonus, first.referred_bonus) == (50, 25)
    assert second.awarded is False

    signups = _count(session_factory, select(func.count()).select_from(ReferralSignup))
    referrer_grants = _count(
        session_factory,
        select(func.count())
        .select_from(LedgerEntry)
        .where(LedgerEntry.action == Action.REFERRAL_REFERRER),
    )
    assert signups == 1
    assert referrer_grants == 1

    assert projector.get_balance("ref") == 50
    assert projector.get_balance("newbie") == 25


def test_second_referrer_for_same_user_gets_nothing(referrals, projector):
    assert referrals.process_referral("ref-a", "newbie").awarded is True
    assert referrals.process_referral("ref-b", "newbie").awarded is False

    assert projector.get_balance("ref-b") == 0
    assert projector.get_referral_stats("ref-b").referred_count == 0


def test_self_referral_rejected(referrals):
    with pytest.raises(SelfReferral):
        referrals.process_referral("same", "same")


def test_referral_stats(referrals, credits, projector):
    referrals.process_referral("ref", "u1")
    referrals.process_referral("ref", "u2")
    referrals.process_referral("ref", "u2")
    # unrelated grants do not count as referral credits
    credits.grant("ref", 7, reason="admin")

    stats = projector.get_referral_stats("ref")
    assert stats.referred_count == 2
    assert stats.credits_from_referrals == 100

    empty = projector.get_referral_stats("nobody")
    assert (empty.referred_count, empty.credits_from_referrals) == (0, 0)


def test_zero_referred_bonus_skips_grant(credits, projector):
    from creditgate.referrals import ReferralService

    service = ReferralService(credits, referrer_bonus=10, referred_bonus=0)
    result = service.process_referral("ref", "newbie")

    assert result.awarded is True
    assert projector.get_balance("ref") == 10
    assert projector.get_history("newbie").total_count == 0
