"""Tests for the earning path and referral effects."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from shardledger.errors import ConstraintViolation
from shardledger.ledger.awards import award_shards, round_shards
from shardledger.ledger.balances import add_shards, get_balance
from shardledger.referrals.ledger import activate_referral, create_referral, get_referral
from shardledger.store.models import Category
from tests.helpers import wallet

T0 = datetime(2026, 1, 10, tzinfo=timezone.utc)
IN_WINDOW = T0 + timedelta(days=1)
AFTER_WINDOW = T0 + timedelta(days=31)

REFERRER = wallet(1)
REFEREE = wallet(2)


@pytest.fixture()
def referral(db_path, season):
    """Active referral REFERRER → REFEREE, window open from T0 for 30 days."""
    r = create_referral(REFERRER, REFEREE, season.id, db_path=db_path)
    add_shards(REFEREE, season.id, "staking", 100.0, db_path=db_path)
    return activate_referral(r.id, T0, db_path=db_path)


class TestPlainAward:
    def test_no_referral(self, db_path, season):
        result = award_shards(wallet(5), season.id, "social", 42.0, db_path=db_path)
        assert result.applied
        assert result.credited == 42.0
        assert result.referee_multiplier == 1.0
        assert result.referrer_address is None
        assert result.balance.social_shards == 42.0

    def test_rounded_to_two_places(self, db_path, season):
        result = award_shards(wallet(5), season.id, "staking", 33.3333, db_path=db_path)
        assert result.credited == 33.33
        assert round_shards(2.499) == 2.5

    def test_negative_rejected(self, db_path, season):
        with pytest.raises(ValueError):
            award_shards(wallet(5), season.id, "staking", -1.0, db_path=db_path)

    def test_over_category_cap(self, db_path, season):
        with pytest.raises(ConstraintViolation):
            award_shards(wallet(5), season.id, "developer", 5000.01, db_path=db_path)
        assert get_balance(wallet(5), season.id, db_path=db_path) is None

    def test_replay(self, db_path, season):
        award_shards(wallet(5), season.id, "social", 10.0, event_key="social:x", db_path=db_path)
        again = award_shards(wallet(5), season.id, "social", 10.0, event_key="social:x", db_path=db_path)
        assert not again.applied
        assert again.credited == 0.0
        assert get_balance(wallet(5), season.id, db_path=db_path).social_shards == 10.0


class TestReferralEffects:
    def test_referee_multiplier_and_referrer_bonus(self, db_path, season, referral):
        result = award_shards(REFEREE, season.id, "social", 100.0, now=IN_WINDOW, db_path=db_path)
        assert result.referee_multiplier == 1.2
        assert result.credited == 120.0
        assert result.referrer_address == REFERRER
        # ボーナスは倍率適用前の額の 20%
        assert result.referrer_bonus == 20.0

        referrer = get_balance(REFERRER, season.id, db_path=db_path)
        assert referrer.referral_shards == 20.0
        assert referrer.total_shards == 20.0
        assert get_referral(referral.id, db_path=db_path).total_shards_earned == 20.0

    def test_window_closed(self, db_path, season, referral):
        result = award_shards(REFEREE, season.id, "social", 100.0, now=AFTER_WINDOW, db_path=db_path)
        assert result.credited == 100.0
        assert result.referrer_bonus == 0.0
        assert get_balance(REFERRER, season.id, db_path=db_path) is None

    def test_bonus_capped_per_referral(self, db_path, season, referral):
        bonuses = [
            award_shards(
                REFEREE, season.id, "developer", 1000.0,
                event_key=f"dev:{i}", now=IN_WINDOW, db_path=db_path,
            ).referrer_bonus
            for i in range(4)
        ]
        assert bonuses == [200.0, 200.0, 100.0, 0.0]
        assert get_balance(REFERRER, season.id, db_path=db_path).referral_shards == 500.0
        assert get_referral(referral.id, db_path=db_path).total_shards_earned == 500.0

    def test_replay_pays_no_second_bonus(self, db_path, season, referral):
        for _ in range(2):
            award_shards(REFEREE, season.id, "social", 50.0, event_key="social:p1", now=IN_WINDOW, db_path=db_path)
        assert get_balance(REFERRER, season.id, db_path=db_path).referral_shards == 10.0
        assert get_balance(REFEREE, season.id, db_path=db_path).social_shards == 60.0

    def test_referral_category_has_no_effects(self, db_path, season, referral):
        result = award_shards(REFEREE, season.id, Category.REFERRAL, 10.0, now=IN_WINDOW, db_path=db_path)
        assert result.credited == 10.0
        assert result.referrer_bonus == 0.0

    def test_direct_corrections_bypass_referral(self, db_path, season, referral):
        add_shards(REFEREE, season.id, "social", -5.0, db_path=db_path)
        assert get_balance(REFERRER, season.id, db_path=db_path) is None
