"""
Configuration Management
Loads settings from YAML files and environment variables
"""
import yaml
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    environment: str = "development"
    log_level: str = "INFO"

    # API Settings
    api_prefix: str = "/api/v1"

    # Storage
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None

    # Redis (in-flight call counters)
    redis_url: str = "redis://localhost:6379"

    # Voice provider
    vapi_api_key: Optional[str] = None
    vapi_base_url: str = "https://api.vapi.ai"
    vapi_webhook_secret: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


class ConfigManager:
    """Manages loading and merging configuration from multiple sources"""

    def __init__(self, env: str = "development", config_dir: Optional[Path] = None):
        self.env = env
        self.config_dir = config_dir or Path(__file__).parent.parent.parent / "config"
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration files in order of precedence"""
        default_path = self.config_dir / "default.yaml"
        if default_path.exists():
            self._config = self._load_yaml(default_path)

        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            env_config = self._load_yaml(env_path)
            self._deep_merge(self._config, env_config)

        self._substitute_env_vars(self._config)

    def _load_yaml(self, path: Path) -> Dict:
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _substitute_env_vars(self, config: Dict) -> None:
        """Replace ${VAR_NAME} with environment variable values"""
        for key, value in config.items():
            if isinstance(value, dict):
                self._substitute_env_vars(value)
            elif isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                env_var = value[2:-1]
                config[key] = os.getenv(env_var, value)

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Recursively merge override into base"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: config.get("dialer.batch_size") -> 10
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_dialer_config(self) -> "DialerConfig":
        return DialerConfig.from_config(self)


class DialerConfig:
    """Scheduler and reconciler tunables (dialer.* in the YAML files)"""

    def __init__(
        self,
        tick_interval_seconds: float = 5.0,
        batch_size: int = 10,
        provider_timeout_seconds: float = 15.0,
        stale_call_timeout_seconds: int = 600,
        max_call_duration_seconds: int = 3600,
        stale_call_check_interval_seconds: int = 60,
        webhook_max_skew_seconds: int = 300,
        credit_rates: Optional[Dict[str, int]] = None
    ):
        self.tick_interval_seconds = tick_interval_seconds
        self.batch_size = batch_size
        self.provider_timeout_seconds = provider_timeout_seconds
        self.stale_call_timeout_seconds = stale_call_timeout_seconds
        self.max_call_duration_seconds = max_call_duration_seconds
        self.stale_call_check_interval_seconds = stale_call_check_interval_seconds
        self.webhook_max_skew_seconds = webhook_max_skew_seconds
        self.credit_rates = credit_rates or {}

    @classmethod
    def from_config(cls, config: ConfigManager) -> "DialerConfig":
        defaults = cls()
        return cls(
            tick_interval_seconds=float(config.get("dialer.tick_interval_seconds", defaults.tick_interval_seconds)),
            batch_size=int(config.get("dialer.batch_size", defaults.batch_size)),
            provider_timeout_seconds=float(
                config.get("dialer.provider_timeout_seconds", defaults.provider_timeout_seconds)
            ),
            stale_call_timeout_seconds=int(
                config.get("dialer.stale_call_timeout_seconds", defaults.stale_call_timeout_seconds)
            ),
            max_call_duration_seconds=int(
                config.get("dialer.max_call_duration_seconds", defaults.max_call_duration_seconds)
            ),
            stale_call_check_interval_seconds=int(
                config.get("dialer.stale_call_check_interval_seconds", defaults.stale_call_check_interval_seconds)
            ),
            webhook_max_skew_seconds=int(
                config.get("dialer.webhook_max_skew_seconds", defaults.webhook_max_skew_seconds)
            ),
            credit_rates={k: int(v) for k, v in (config.get("credit_rates", {}) or {}).items()},
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


@lru_cache()
def get_config_manager() -> ConfigManager:
    return ConfigManager(env=get_settings().environment)
