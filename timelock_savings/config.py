"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
Ledger parameters are read once when a ledger instance is built and are
read-only for the lifetime of that instance.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

from .rewards import RewardParameters


DAY_SECONDS = 24 * 60 * 60


class SavingsConfig(BaseSettings):
    """Time-locked savings ledger configuration"""
    
    model_config = SettingsConfigDict(
        env_prefix="TIMELOCK_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )
    
    # Database configuration
    database_url: str = "sqlite:///timelock_savings.db"  # or "memory"
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8091
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    # Reward policy parameters (integer token units and seconds)
    min_lock_period_seconds: int = 30 * DAY_SECONDS
    bonus_period_seconds: int = 30 * DAY_SECONDS
    base_rate: int = 2
    bonus_rate: int = 1
    penalty_rate: int = 10
    rate_denominator: int = 100
    min_deposit_amount: Optional[int] = None  # None accepts any positive amount
    
    # Principals
    admin_principal: str = "admin"
    custodian_principal: str = "savings-ledger"
    
    # Feature flags
    enable_audit_logging: bool = True
    
    def reward_parameters(self) -> RewardParameters:
        """Build the immutable reward parameters for a ledger instance"""
        return RewardParameters(
            min_lock_period=self.min_lock_period_seconds,
            bonus_period=self.bonus_period_seconds,
            base_rate=self.base_rate,
            bonus_rate=self.bonus_rate,
            penalty_rate=self.penalty_rate,
            rate_denominator=self.rate_denominator
        )


# Global configuration instance
config = SavingsConfig()


def get_config() -> SavingsConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> SavingsConfig:
    """Reload configuration from environment"""
    global config
    config = SavingsConfig()
    return config
