"""
Configuration models for the SolScalp exit desk.

Uses Pydantic for validation and type safety.
"""
import os
import re
from pathlib import Path
from typing import List, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ${VAR} or $VAR
_ENV_PATTERN = re.compile(r'\$\{([^}]+)\}|\$([a-zA-Z_][a-zA-Z0-9_]*)')

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"


def _unset_placeholder(value: Optional[str]) -> Optional[str]:
    """An unexpanded ${VAR} or empty string means "not configured"."""
    if value is None:
        return None
    value = value.strip()
    if not value or _ENV_PATTERN.fullmatch(value):
        return None
    return value


class SystemConfig(BaseSettings):
    """System metadata."""
    model_config = SettingsConfigDict(extra="ignore")

    name: str = "SolScalp Exit Desk"
    version: str = "1.0.0"
    dry_run: bool = True  # Paper trading: sells are quoted but never signed or sent
    data_dir: str = "data"


class ExitConfig(BaseSettings):
    """Exit monitoring and exit-rule thresholds."""
    model_config = SettingsConfigDict(extra="ignore")

    # Loop cadence
    monitor_interval_seconds: float = Field(default=60.0, ge=5.0, le=600.0)
    fast_stop_loss_interval_seconds: float = Field(default=10.0, ge=1.0, le=120.0)

    # Protective exits
    stop_loss_percent: float = Field(default=20.0, gt=0.0, le=100.0, description="Used when a position carries none")
    trailing_stop_enabled: bool = False
    trailing_stop_percent: float = Field(default=10.0, gt=0.0, le=100.0)
    guard_sensitive_strategies: List[Literal["scalp", "momentum", "breakout"]] = Field(
        default_factory=lambda: ["momentum"],
        description="Strategies force-closed on RED and given tightened stops on ORANGE",
    )
    orange_stop_multiplier: float = Field(default=0.5, gt=0.0, le=1.0)

    # Scalp: partial at +70%, remainder at +100%, or on MC target
    scalp_partial_trigger_percent: float = Field(default=70.0, gt=0.0)
    scalp_partial_sell_percent: float = Field(default=80.0, gt=0.0, lt=100.0)
    scalp_final_target_percent: float = Field(default=100.0, gt=0.0)
    scalp_exit_mc: float = Field(default=500_000.0, gt=0.0)

    # Momentum: exit once market cap enters the exit zone
    momentum_exit_mc: float = Field(default=135_000.0, gt=0.0)

    # Breakout: target gain, or sell pressure while in profit
    breakout_target_gain_percent: float = Field(default=20.0, gt=0.0)
    breakout_min_buy_pressure: float = Field(default=40.0, ge=0.0, le=100.0)


class MarketGuardConfig(BaseSettings):
    """BTC cascade protection thresholds."""
    model_config = SettingsConfigDict(extra="ignore")

    check_interval_seconds: float = Field(default=300.0, ge=30.0, le=3600.0)
    yellow_drop_1h_pct: float = Field(default=3.0, gt=0.0)
    orange_drop_4h_pct: float = Field(default=4.0, gt=0.0)
    red_drop_30m_pct: float = Field(default=5.0, gt=0.0)
    red_volatility_multiplier: float = Field(default=10.0, gt=1.0)
    stable_drop_pct: float = Field(default=1.0, gt=0.0)
    all_clear_stable_hours: float = Field(default=4.0, gt=0.0, le=48.0)
    reference_asset_id: str = "bitcoin"


class CooldownConfig(BaseSettings):
    """Stop-loss cooldown and consecutive-stop pause."""
    model_config = SettingsConfigDict(extra="ignore")

    token_cooldown_minutes: float = Field(default=60.0, ge=0.0)
    consecutive_window_minutes: float = Field(default=30.0, gt=0.0)
    consecutive_threshold: int = Field(default=2, ge=1, le=20)
    pause_duration_minutes: float = Field(default=90.0, ge=0.0)


class RiskConfig(BaseSettings):
    """Risk limits read by the entry scanners."""
    model_config = SettingsConfigDict(extra="ignore")

    daily_loss_limit_sol: float = Field(default=5.0, gt=0.0)


class ExecutionConfig(BaseSettings):
    """Swap, signing and submission settings."""
    model_config = SettingsConfigDict(extra="ignore")

    # Credentials (loaded from env or yaml)
    wallet_secret: Optional[str] = None  # base58 or JSON byte array
    wallet_address: Optional[str] = None  # paper mode without a secret
    rpc_url: str = DEFAULT_RPC_URL

    raydium_base_url: str = "https://transaction-v1.raydium.io"
    priority_fee_micro_lamports: int = Field(default=10000, ge=0)
    sol_price_usd: float = Field(default=150.0, gt=0.0, description="SOL/USD used to size slippage")

    max_retries: int = Field(default=3, ge=1, le=10)
    retry_backoff_seconds: float = Field(default=2.0, ge=0.0, le=30.0)
    confirm_timeout_seconds: float = Field(default=60.0, ge=5.0, le=300.0)

    @field_validator("wallet_secret", "wallet_address", mode="before")
    @classmethod
    def _strip_unset(cls, v):
        return _unset_placeholder(v)

    @field_validator("rpc_url", mode="before")
    @classmethod
    def _default_rpc(cls, v):
        return _unset_placeholder(v) or DEFAULT_RPC_URL


class DataConfig(BaseSettings):
    """Market-data feed endpoints."""
    model_config = SettingsConfigDict(extra="ignore")

    dexscreener_base_url: str = "https://api.dexscreener.com"
    jupiter_price_url: str = "https://api.jup.ag/price/v3"
    jupiter_api_key: Optional[str] = None
    coingecko_price_url: str = "https://api.coingecko.com/api/v3/simple/price"
    request_timeout_seconds: float = Field(default=10.0, ge=1.0, le=60.0)

    @field_validator("jupiter_api_key", mode="before")
    @classmethod
    def _strip_unset(cls, v):
        return _unset_placeholder(v)


class MonitoringConfig(BaseSettings):
    """Monitoring and alerting configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Optional[str] = "logs/run.log"

    # Alert delivery
    alert_webhook_url: Optional[str] = None
    alert_chat_id: Optional[str] = None
    alert_rate_limit_seconds: float = Field(default=0.0, ge=0.0, le=3600.0)

    @field_validator("alert_webhook_url", "alert_chat_id", mode="before")
    @classmethod
    def _strip_unset(cls, v):
        return _unset_placeholder(v)


class Config(BaseSettings):
    """Main configuration class."""
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        extra="ignore",
    )

    system: SystemConfig = Field(default_factory=SystemConfig)
    exits: ExitConfig = Field(default_factory=ExitConfig)
    market_guard: MarketGuardConfig = Field(default_factory=MarketGuardConfig)
    cooldowns: CooldownConfig = Field(default_factory=CooldownConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    environment: Literal["dev", "paper", "prod"] = "prod"

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """Load configuration from YAML file."""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            raw_content = f.read()

        def replace_match(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))  # Return original if not found

        expanded_content = _ENV_PATTERN.sub(replace_match, raw_content)
        config_dict = yaml.safe_load(expanded_content) or {}

        if "ENVIRONMENT" in os.environ:
            config_dict["environment"] = os.environ["ENVIRONMENT"]

        # DRY_RUN env var overrides yaml in every environment
        env_dry_run = os.getenv("DRY_RUN")
        if env_dry_run is not None:
            config_dict.setdefault("system", {})
            config_dict["system"]["dry_run"] = env_dry_run in ("1", "true", "True", "TRUE")

        return cls(**config_dict)

    def validate_config(self) -> None:
        """Perform additional validation checks."""
        if not self.system.dry_run and not self.execution.wallet_secret:
            raise ValueError("Live trading requires execution.wallet_secret (WALLET_PRIVATE_KEY)")

        if self.exits.fast_stop_loss_interval_seconds >= self.exits.monitor_interval_seconds:
            raise ValueError("fast_stop_loss_interval_seconds must be shorter than monitor_interval_seconds")


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load and validate configuration.

    Args:
        config_path: Path to config.yaml file. If None, uses solscalp/config/config.yaml

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If config file not found
        ValueError: If configuration validation fails
    """
    if config_path is None:
        config_path = Path(__file__).parent / "config.yaml"

    config = Config.from_yaml(config_path)
    config.validate_config()

    return config
