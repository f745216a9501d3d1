"""Tests for season persistence and date-driven transitions."""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from shardledger.errors import (
    ActiveSeasonConflict,
    InvalidTransition,
    NotFound,
    SeasonOverlap,
)
from shardledger.ledger.balances import add_shards
from shardledger.seasons.store import (
    activate_season,
    advance_season_statuses,
    complete_season,
    get_current_season,
    get_season,
    list_seasons,
    refresh_season_stats,
    season_progress,
    update_season_config,
)
from shardledger.store.models import SeasonStatus
from tests.helpers import (
    SEASON_END,
    SEASON_START,
    insert_active_season,
    insert_upcoming_season,
    wallet,
)

NEXT_END = SEASON_END + timedelta(days=90)


class TestInsert:
    def test_insert_and_get(self, db_path):
        s = insert_upcoming_season(db_path)
        assert s.id is not None
        loaded = get_season(s.id, db_path)
        assert loaded.name == "Season 1"
        assert loaded.start_date == SEASON_START
        assert loaded.config.vault_rates["ILV"] == 80

    def test_missing_season(self, db_path):
        with pytest.raises(NotFound):
            get_season(999, db_path)

    def test_overlap_on_same_chain_rejected(self, db_path):
        insert_upcoming_season(db_path)
        with pytest.raises(SeasonOverlap):
            insert_upcoming_season(
                db_path, name="S2", start_date=SEASON_START + timedelta(days=30), end_date=NEXT_END
            )

    def test_back_to_back_allowed(self, db_path):
        insert_upcoming_season(db_path)
        s2 = insert_upcoming_season(db_path, name="S2", start_date=SEASON_END, end_date=NEXT_END)
        assert s2.id is not None

    def test_other_chain_not_checked(self, db_path):
        insert_upcoming_season(db_path)
        s2 = insert_upcoming_season(db_path, name="Arb S1", chain="arbitrum")
        assert s2.chain == "arbitrum"

    def test_completed_seasons_ignored_for_overlap(self, db_path):
        s1 = insert_active_season(db_path)
        complete_season(s1.id, SEASON_START + timedelta(days=10), db_path=db_path)
        s2 = insert_upcoming_season(
            db_path, name="S2", start_date=SEASON_START + timedelta(days=20), end_date=NEXT_END
        )
        assert s2.status == SeasonStatus.UPCOMING


class TestTransitions:
    def test_activate(self, db_path):
        s = insert_upcoming_season(db_path)
        activate_season(s.id, db_path=db_path)
        assert get_season(s.id, db_path).status == SeasonStatus.ACTIVE
        assert get_current_season("base", db_path=db_path).id == s.id

    def test_second_active_season_on_chain_rejected(self, db_path):
        insert_active_season(db_path)
        s2 = insert_upcoming_season(db_path, name="S2", start_date=SEASON_END, end_date=NEXT_END)
        with pytest.raises(ActiveSeasonConflict):
            activate_season(s2.id, db_path=db_path)
        assert get_season(s2.id, db_path).status == SeasonStatus.UPCOMING

    def test_complete_then_activate_next(self, db_path):
        s1 = insert_active_season(db_path)
        s2 = insert_upcoming_season(db_path, name="S2", start_date=SEASON_END, end_date=NEXT_END)
        complete_season(s1.id, db_path=db_path)
        activate_season(s2.id, db_path=db_path)
        assert get_current_season("base", db_path=db_path).id == s2.id

    def test_complete_uses_scheduled_end(self, db_path):
        s1 = insert_active_season(db_path)
        done = complete_season(s1.id, db_path=db_path)
        assert done.end_date == SEASON_END

    def test_complete_upcoming_rejected(self, db_path):
        s = insert_upcoming_season(db_path)
        with pytest.raises(InvalidTransition):
            complete_season(s.id, db_path=db_path)

    def test_activate_completed_rejected(self, db_path):
        s = insert_active_season(db_path)
        complete_season(s.id, db_path=db_path)
        with pytest.raises(InvalidTransition):
            activate_season(s.id, db_path=db_path)

    def test_config_update(self, db_path):
        s = insert_active_season(db_path)
        cfg = replace(s.config, vault_rates={**s.config.vault_rates, "ILV": 120})
        update_season_config(s.id, cfg, db_path=db_path)
        assert get_season(s.id, db_path).config.vault_rates["ILV"] == 120

    def test_config_update_after_completion_rejected(self, db_path):
        s = insert_active_season(db_path)
        complete_season(s.id, db_path=db_path)
        with pytest.raises(InvalidTransition):
            update_season_config(s.id, s.config, db_path=db_path)


class TestAdvance:
    def test_handover_in_one_pass(self, db_path):
        s1 = insert_active_season(db_path)
        s2 = insert_upcoming_season(db_path, name="S2", start_date=SEASON_END, end_date=NEXT_END)
        changed = advance_season_statuses(SEASON_END + timedelta(hours=1), db_path=db_path)
        assert [(s.id, s.status) for s in changed] == [
            (s1.id, SeasonStatus.COMPLETED),
            (s2.id, SeasonStatus.ACTIVE),
        ]

    def test_nothing_due(self, db_path):
        insert_upcoming_season(db_path)
        assert advance_season_statuses(SEASON_START - timedelta(days=1), db_path=db_path) == []

    def test_list_filters(self, db_path):
        insert_active_season(db_path)
        insert_upcoming_season(db_path, name="Arb S1", chain="arbitrum")
        assert len(list_seasons(db_path=db_path)) == 2
        assert [s.name for s in list_seasons(chain="arbitrum", db_path=db_path)] == ["Arb S1"]
        assert [s.name for s in list_seasons(status="active", db_path=db_path)] == ["Season 1"]


class TestStats:
    def test_refresh_counts_only_positive_totals(self, db_path, season):
        add_shards(wallet(1), season.id, "staking", 100.0, db_path=db_path)
        add_shards(wallet(2), season.id, "social", 50.5, db_path=db_path)
        add_shards(wallet(3), season.id, "developer", 10.0, db_path=db_path)
        add_shards(wallet(3), season.id, "developer", -10.0, db_path=db_path)

        s = refresh_season_stats(season.id, db_path=db_path)
        assert s.total_participants == 2
        assert s.total_shards_issued == pytest.approx(150.5)
        assert get_season(season.id, db_path).total_participants == 2

    def test_progress(self, db_path, season):
        p = season_progress(season.id, SEASON_START + timedelta(days=9), db_path=db_path)
        assert p.days_elapsed == 9
        assert p.status == SeasonStatus.ACTIVE
