from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Storage / logging
    db_path: str = ""  # empty → data/shards.db
    log_level: str = "INFO"
    log_retention_days: int = 30

    # GitHub
    github_api_url: str = "https://api.github.com"
    github_api_token: str = ""
    github_protected_branches: list[str] = ["main", "master"]

    # Chain RPC (JSON-RPC endpoints per supported chain)
    ethereum_rpc_url: str = "https://eth.llamarpc.com"
    base_rpc_url: str = "https://mainnet.base.org"
    arbitrum_rpc_url: str = "https://arb1.arbitrum.io/rpc"
    optimism_rpc_url: str = "https://mainnet.optimism.io"

    # Block explorers (Etherscan family)
    etherscan_api_key: str = ""
    basescan_api_key: str = ""
    arbiscan_api_key: str = ""
    optimism_explorer_api_key: str = ""

    # Price feed
    coingecko_api_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: str = ""
    price_max_age_minutes: int = 60  # これより古い価格では staking shards を付与しない

    # Provider calls
    verifier_timeout_sec: float = 15.0

    # === Season defaults ===
    default_vault_rate: int = 100  # shards per $1000 when asset has no configured rate
    default_social_conversion_rate: int = 100  # points per shard
    default_redeem_period_days: int = 14

    # === Referrals ===
    referral_bonus_rate: float = 0.2  # referrer gets 20% of referee earnings
    referral_max_bonus_per_referral: float = 500.0
    referral_referee_multiplier: float = 1.2
    referral_window_days: int = 30
    referral_activation_threshold: float = 100.0  # referee total shards needed to activate
    referral_max_per_wallet: int = 10  # per season

    # === Earning anomaly flags (history metadata only, never blocks awards) ===
    anomaly_variance_threshold: float = 10.0  # daily total vs 30-day average
    anomaly_first_day_limit: float = 5000.0

    # === Job runner ===
    job_max_retries: int = 5
    job_backoff_base_sec: float = 30.0
    job_backoff_max_sec: float = 3600.0
    job_workers: int = 4
    job_batch_size: int = 50


settings = Settings()
