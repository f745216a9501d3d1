"""Tests for daily earning history."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from shardledger.errors import ConstraintViolation, NotFound
from shardledger.history.recorder import (
    get_daily_averages,
    get_daily_snapshot,
    get_earning_history,
    get_history_summary,
    get_top_earners_by_date,
    record_daily_snapshot,
)
from shardledger.ledger.balances import add_shards
from shardledger.store.models import VaultBreakdownEntry
from tests.helpers import wallet


def _earn_days(db_path, season_id, amounts, start=date(2026, 1, 1), who=1):
    """Add `amount` staking shards and snapshot, one day per amount."""
    for i, amount in enumerate(amounts):
        add_shards(wallet(who), season_id, "staking", amount, db_path=db_path)
        record_daily_snapshot(wallet(who), season_id, start + timedelta(days=i), db_path=db_path)


class TestRecordDailySnapshot:
    def test_first_day_records_full_balance(self, db_path, season):
        add_shards(wallet(1), season.id, "staking", 100.0, db_path=db_path)
        h = record_daily_snapshot(wallet(1), season.id, "2026-01-05", db_path=db_path)
        assert h.staking_shards == 100.0
        assert h.daily_total == 100.0
        assert h.cumulative_staking == 100.0

    def test_delta_against_previous_row(self, db_path, season):
        add_shards(wallet(1), season.id, "staking", 100.0, db_path=db_path)
        record_daily_snapshot(wallet(1), season.id, "2026-01-05", db_path=db_path)
        add_shards(wallet(1), season.id, "social", 50.0, db_path=db_path)
        h = record_daily_snapshot(wallet(1), season.id, "2026-01-06", db_path=db_path)
        assert h.staking_shards == 0.0
        assert h.social_shards == 50.0
        assert h.daily_total == 50.0
        assert h.cumulative_staking == 100.0
        assert h.cumulative_social == 50.0

    def test_second_write_same_day_returns_stored_row(self, db_path, season):
        add_shards(wallet(1), season.id, "staking", 100.0, db_path=db_path)
        first = record_daily_snapshot(wallet(1), season.id, "2026-01-05", db_path=db_path)
        add_shards(wallet(1), season.id, "staking", 900.0, db_path=db_path)
        again = record_daily_snapshot(wallet(1), season.id, "2026-01-05", db_path=db_path)
        assert again.id == first.id
        assert again.daily_total == 100.0

    def test_breakdown_and_metadata_stored(self, db_path, season):
        add_shards(wallet(1), season.id, "staking", 400.0, db_path=db_path)
        entry = VaultBreakdownEntry(wallet(0xA1), "ILV", "base", 5000.0, 4, 400.0)
        record_daily_snapshot(
            wallet(1), season.id, "2026-01-05",
            vault_breakdown=[entry], metadata={"source": "test"}, db_path=db_path,
        )
        h = get_daily_snapshot(wallet(1), season.id, "2026-01-05", db_path=db_path)
        assert h.vault_breakdown[0]["asset_symbol"] == "ILV"
        assert h.vault_breakdown[0]["shards_earned"] == 400.0
        assert h.metadata == {"source": "test"}

    def test_no_balance(self, db_path, season):
        with pytest.raises(NotFound):
            record_daily_snapshot(wallet(1), season.id, "2026-01-05", db_path=db_path)

    def test_earlier_day_after_later_row_rejected(self, db_path, season):
        add_shards(wallet(1), season.id, "staking", 100.0, db_path=db_path)
        record_daily_snapshot(wallet(1), season.id, "2026-01-11", db_path=db_path)
        with pytest.raises(ConstraintViolation, match="already closed past 2026-01-10"):
            record_daily_snapshot(wallet(1), season.id, "2026-01-10", db_path=db_path)

        assert get_daily_snapshot(wallet(1), season.id, "2026-01-10", db_path=db_path) is None
        s = get_history_summary(wallet(1), season.id, db_path=db_path)
        assert s.total_shards == 100.0

    def test_earlier_day_allowed_for_other_wallet(self, db_path, season):
        add_shards(wallet(1), season.id, "staking", 100.0, db_path=db_path)
        add_shards(wallet(2), season.id, "staking", 40.0, db_path=db_path)
        record_daily_snapshot(wallet(1), season.id, "2026-01-11", db_path=db_path)
        h = record_daily_snapshot(wallet(2), season.id, "2026-01-10", db_path=db_path)
        assert h.daily_total == 40.0


class TestAnomalyFlags:
    def test_large_first_day(self, db_path, season):
        add_shards(wallet(1), season.id, "staking", 6000.0, db_path=db_path)
        h = record_daily_snapshot(wallet(1), season.id, "2026-01-05", db_path=db_path)
        assert "anomaly_flags" in h.metadata

    def test_spike_against_recent_average(self, db_path, season):
        _earn_days(db_path, season.id, [10.0, 10.0, 10.0, 200.0])
        h = get_daily_snapshot(wallet(1), season.id, "2026-01-04", db_path=db_path)
        assert "20.0x" in h.metadata["anomaly_flags"][0]

    def test_normal_day_not_flagged(self, db_path, season):
        _earn_days(db_path, season.id, [10.0, 12.0])
        h = get_daily_snapshot(wallet(1), season.id, "2026-01-02", db_path=db_path)
        assert "anomaly_flags" not in h.metadata


class TestQueries:
    def test_history_newest_first(self, db_path, season):
        _earn_days(db_path, season.id, [10.0, 20.0, 30.0])
        history = get_earning_history(wallet(1), season.id, db_path=db_path)
        assert [h.date for h in history] == ["2026-01-03", "2026-01-02", "2026-01-01"]
        limited = get_earning_history(wallet(1), season.id, limit=1, offset=1, db_path=db_path)
        assert [h.date for h in limited] == ["2026-01-02"]

    def test_history_date_range(self, db_path, season):
        _earn_days(db_path, season.id, [10.0, 20.0, 30.0])
        history = get_earning_history(
            wallet(1), season.id, start="2026-01-02", end="2026-01-02", db_path=db_path
        )
        assert [h.daily_total for h in history] == [20.0]

    def test_summary(self, db_path, season):
        _earn_days(db_path, season.id, [10.0, 20.0, 30.0])
        s = get_history_summary(wallet(1), season.id, db_path=db_path)
        assert s.total_days == 3
        assert s.total_shards == 60.0
        assert s.average_daily == 20.0
        assert s.by_category["staking"] == 60.0
        assert s.by_category["social"] == 0.0

    def test_summary_empty(self, db_path, season):
        s = get_history_summary(wallet(1), season.id, db_path=db_path)
        assert s.total_days == 0
        assert s.average_daily == 0.0

    def test_trend_up(self, db_path, season):
        _earn_days(db_path, season.id, [10.0, 10.0, 30.0, 30.0])
        avg = get_daily_averages(wallet(1), season.id, days=2, as_of="2026-01-04", db_path=db_path)
        assert avg.average_daily == 30.0
        assert avg.trend == "up"
        assert avg.trend_pct == 200.0

    def test_trend_stable(self, db_path, season):
        _earn_days(db_path, season.id, [10.0, 10.0, 10.0, 10.2])
        avg = get_daily_averages(wallet(1), season.id, days=2, as_of="2026-01-04", db_path=db_path)
        assert avg.trend == "stable"

    def test_trend_down(self, db_path, season):
        _earn_days(db_path, season.id, [30.0, 30.0, 10.0, 10.0])
        avg = get_daily_averages(wallet(1), season.id, days=2, as_of="2026-01-04", db_path=db_path)
        assert avg.trend == "down"

    def test_no_previous_window(self, db_path, season):
        _earn_days(db_path, season.id, [10.0])
        avg = get_daily_averages(wallet(1), season.id, days=7, as_of="2026-01-01", db_path=db_path)
        assert avg.trend_pct == 100.0
        assert avg.trend == "up"

    def test_top_earners(self, db_path, season):
        _earn_days(db_path, season.id, [10.0], who=1)
        _earn_days(db_path, season.id, [50.0], who=2)
        _earn_days(db_path, season.id, [30.0], who=3)
        top = get_top_earners_by_date(season.id, "2026-01-01", limit=2, db_path=db_path)
        assert [h.wallet_address for h in top] == [wallet(2), wallet(3)]
