"""
Unit Tests for Configuration Management
"""
import pytest

from campaign_dialer.core.config import ConfigManager, DialerConfig


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "default.yaml").write_text(
        "dialer:\n"
        "  tick_interval_seconds: 5\n"
        "  batch_size: 10\n"
        "  stale_call_timeout_seconds: 600\n"
        "credit_rates:\n"
        "  voice_standard: 30\n"
        "vapi:\n"
        "  base_url: ${TEST_VAPI_BASE_URL}\n"
    )
    (tmp_path / "staging.yaml").write_text(
        "dialer:\n"
        "  batch_size: 25\n"
    )
    return tmp_path


class TestConfigManager:
    """Tests for YAML loading"""

    def test_environment_file_overrides_default(self, config_dir):
        config = ConfigManager(env="staging", config_dir=config_dir)
        assert config.get("dialer.batch_size") == 25
        assert config.get("dialer.tick_interval_seconds") == 5

    def test_missing_key_returns_default(self, config_dir):
        config = ConfigManager(env="staging", config_dir=config_dir)
        assert config.get("dialer.nope", 7) == 7

    def test_env_var_substitution(self, config_dir, monkeypatch):
        monkeypatch.setenv("TEST_VAPI_BASE_URL", "https://vapi.example.com")
        config = ConfigManager(env="development", config_dir=config_dir)
        assert config.get("vapi.base_url") == "https://vapi.example.com"


class TestDialerConfig:
    """Tests for DialerConfig.from_config"""

    def test_from_config(self, config_dir):
        dialer = ConfigManager(env="staging", config_dir=config_dir).get_dialer_config()

        assert dialer.batch_size == 25
        assert dialer.tick_interval_seconds == 5.0
        assert dialer.provider_timeout_seconds == 15.0
        assert dialer.credit_rates == {"voice_standard": 30}

    def test_shipped_default_config(self):
        dialer = ConfigManager(env="development").get_dialer_config()
        assert dialer.credit_rates["voice_premium"] == 35
        assert dialer.webhook_max_skew_seconds == 300
        assert dialer.max_call_duration_seconds == 3600

    def test_defaults(self):
        dialer = DialerConfig()
        assert dialer.stale_call_timeout_seconds == 600
        assert dialer.max_call_duration_seconds == 3600
        assert dialer.credit_rates == {}
