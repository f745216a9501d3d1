"""Tests for the shard balance ledger."""

from __future__ import annotations

import sqlite3
from concurrent.futures import ThreadPoolExecutor

import pytest

from shardledger.errors import NotFound
from shardledger.ledger.balances import (
    add_shards,
    get_balance,
    get_wallet_balances,
    list_season_wallets,
    recalculate_total,
)
from shardledger.store.models import Category
from tests.helpers import insert_active_season, wallet


class TestAddShards:
    def test_first_write_creates_row(self, db_path, season):
        b = add_shards(wallet(1), season.id, Category.STAKING, 100.0, db_path=db_path)
        assert b.staking_shards == 100.0
        assert b.total_shards == 100.0
        assert b.social_shards == 0.0

    def test_correction(self, db_path, season):
        add_shards(wallet(1), season.id, Category.SOCIAL, 250.0, db_path=db_path)
        b = add_shards(wallet(1), season.id, Category.SOCIAL, -50.0, db_path=db_path)
        assert b.social_shards == 200.0
        assert b.total_shards == 200.0

    def test_total_is_exact_sum_of_categories(self, db_path, season):
        deltas = [
            (Category.STAKING, 0.1),
            (Category.SOCIAL, 0.2),
            (Category.DEVELOPER, 0.3),
            (Category.REFERRAL, 0.7),
            (Category.STAKING, 123.456),
            (Category.SOCIAL, -0.15),
            (Category.DEVELOPER, 1e-3),
        ]
        for category, amount in deltas:
            b = add_shards(wallet(1), season.id, category, amount, db_path=db_path)
            # 浮動小数点でも完全一致
            assert b.total_shards == b.category_sum

    def test_correction_on_mixed_balance(self, db_path, season):
        add_shards(wallet(1), season.id, Category.STAKING, 100.0, db_path=db_path)
        add_shards(wallet(1), season.id, Category.SOCIAL, 50.0, db_path=db_path)
        add_shards(wallet(1), season.id, Category.DEVELOPER, 75.0, db_path=db_path)
        b = add_shards(wallet(1), season.id, Category.REFERRAL, 25.0, db_path=db_path)
        assert b.total_shards == 250.0

        b = add_shards(wallet(1), season.id, Category.STAKING, -50.0, db_path=db_path)
        assert b.staking_shards == 50.0
        assert b.social_shards == 50.0
        assert b.developer_shards == 75.0
        assert b.referral_shards == 25.0
        assert b.total_shards == 200.0

    def test_order_of_deltas_does_not_matter(self, db_path, season):
        deltas = [
            (Category.STAKING, 100.0),
            (Category.SOCIAL, 12.5),
            (Category.STAKING, -30.0),
            (Category.DEVELOPER, 200.0),
            (Category.REFERRAL, 4.25),
            (Category.SOCIAL, -2.5),
        ]
        orders = [deltas, deltas[::-1], deltas[3:] + deltas[:3], [deltas[i] for i in (1, 4, 0, 5, 2, 3)]]
        for n, order in enumerate(orders, start=1):
            for category, amount in order:
                add_shards(wallet(n), season.id, category, amount, db_path=db_path)

        balances = [get_balance(wallet(n), season.id, db_path=db_path) for n in range(1, len(orders) + 1)]
        for b in balances:
            assert (b.staking_shards, b.social_shards, b.developer_shards, b.referral_shards) == (
                70.0,
                10.0,
                200.0,
                4.25,
            )
            assert b.total_shards == 284.25

    def test_address_normalised(self, db_path, season):
        addr = wallet(0xABCDEF)
        add_shards(addr.upper().replace("0X", "0x"), season.id, "staking", 10.0, db_path=db_path)
        add_shards(addr, season.id, "staking", 5.0, db_path=db_path)
        assert list_season_wallets(season.id, db_path=db_path) == [addr]
        assert get_balance(addr, season.id, db_path=db_path).staking_shards == 15.0

    def test_unknown_category(self, db_path, season):
        with pytest.raises(ValueError):
            add_shards(wallet(1), season.id, "gaming", 1.0, db_path=db_path)


class TestEventKeys:
    def test_replay_is_noop(self, db_path, season):
        add_shards(wallet(1), season.id, "developer", 100.0, event_key="dev:1", db_path=db_path)
        b = add_shards(wallet(1), season.id, "developer", 100.0, event_key="dev:1", db_path=db_path)
        assert b.developer_shards == 100.0
        assert b.total_shards == 100.0

    def test_distinct_keys_both_apply(self, db_path, season):
        add_shards(wallet(1), season.id, "developer", 100.0, event_key="dev:1", db_path=db_path)
        b = add_shards(wallet(1), season.id, "developer", 100.0, event_key="dev:2", db_path=db_path)
        assert b.developer_shards == 200.0


class TestConcurrency:
    def test_no_lost_updates(self, db_path, season):
        add_shards(wallet(1), season.id, Category.STAKING, 0.0, db_path=db_path)

        def worker(i: int) -> None:
            category = Category.STAKING if i % 2 == 0 else Category.SOCIAL
            for _ in range(20):
                add_shards(wallet(1), season.id, category, 1.0, db_path=db_path)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(worker, range(8)))

        b = get_balance(wallet(1), season.id, db_path=db_path)
        assert b.staking_shards == 80.0
        assert b.social_shards == 80.0
        assert b.total_shards == 160.0


class TestReads:
    def test_missing_balance(self, db_path, season):
        assert get_balance(wallet(9), season.id, db_path=db_path) is None

    def test_wallet_balances_newest_season_first(self, db_path, season):
        other = insert_active_season(db_path, name="Arb S1", chain="arbitrum")
        add_shards(wallet(1), season.id, "staking", 1.0, db_path=db_path)
        add_shards(wallet(1), other.id, "staking", 2.0, db_path=db_path)
        assert [b.season_id for b in get_wallet_balances(wallet(1), db_path=db_path)] == [
            other.id,
            season.id,
        ]


class TestRecalculate:
    def test_repairs_drifted_total(self, db_path, season):
        add_shards(wallet(1), season.id, "staking", 40.0, db_path=db_path)
        add_shards(wallet(1), season.id, "referral", 2.5, db_path=db_path)
        conn = sqlite3.connect(str(db_path))
        conn.execute("UPDATE shard_balances SET total_shards = 999")
        conn.commit()
        conn.close()

        b = recalculate_total(wallet(1), season.id, db_path=db_path)
        assert b.total_shards == 42.5

    def test_missing_row(self, db_path, season):
        with pytest.raises(NotFound):
            recalculate_total(wallet(1), season.id, db_path=db_path)
