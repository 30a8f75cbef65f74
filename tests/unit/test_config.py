"""
Unit tests for Tunesmith configuration system
Tests settings defaults, environment loading, and configuration methods
"""
import pytest
from unittest.mock import patch

from tunesmith.core.config import TunesmithSettings


@pytest.mark.unit
class TestConfigurationSystem:
    """Test core configuration functionality"""

    def test_default_configuration_values(self):
        """Test default polling and limit values"""
        settings = TunesmithSettings()

        assert settings.POLL_INITIAL_DELAY == 2.0
        assert settings.POLL_INTERVAL == 5.0
        assert settings.POLL_TIMEOUT == 300.0
        assert settings.RATE_LIMIT_BACKEND == "memory"
        assert settings.SUPPORTED_SERVICES == ["suno", "mureka"]
        assert "redis://" in settings.REDIS_URL

    def test_environment_overrides(self, tmp_path):
        """Environment variables replace defaults"""
        env = {
            "POLL_TIMEOUT": "120",
            "SUNO_API_KEY": "sk-test",
            "RATE_LIMIT_BACKEND": "redis",
            "STORAGE_PATH": str(tmp_path / "audio"),
        }
        with patch.dict("os.environ", env):
            settings = TunesmithSettings()

        assert settings.POLL_TIMEOUT == 120.0
        assert settings.SUNO_API_KEY == "sk-test"
        assert settings.RATE_LIMIT_BACKEND == "redis"
        assert (tmp_path / "audio").is_dir()

    def test_polling_config(self):
        settings = TunesmithSettings(POLL_INITIAL_DELAY=1.0, POLL_INTERVAL=3.0, POLL_TIMEOUT=60.0)

        assert settings.get_polling_config() == {
            "initial_delay": 1.0,
            "interval": 3.0,
            "timeout": 60.0,
        }

    def test_rate_limit_config_is_a_copy(self):
        settings = TunesmithSettings()

        limits = settings.get_rate_limit_config()
        limits["suno"]["max_requests"] = 999

        assert settings.RATE_LIMITS["suno"]["max_requests"] == 5

    def test_provider_config(self):
        """Test provider connection settings"""
        settings = TunesmithSettings(
            SUNO_API_KEY="suno-key",
            CALLBACK_BASE_URL="https://tunes.example.com/"
        )

        suno = settings.get_provider_config("suno")
        assert suno["api_key"] == "suno-key"
        assert suno["callback_url"] == "https://tunes.example.com/api/callbacks/suno"
        assert suno["default_model"] == "chirp-v3-5"

        mureka = settings.get_provider_config("mureka")
        assert mureka["base_url"] == "https://api.mureka.ai"
        assert "callback_url" not in mureka

    def test_unknown_provider_config_raises(self):
        settings = TunesmithSettings()

        with pytest.raises(ValueError):
            settings.get_provider_config("udio")

    def test_service_validation(self):
        """Test service name validation"""
        settings = TunesmithSettings()

        assert settings.validate_service("suno") == True
        assert settings.validate_service("MUREKA") == True

        assert settings.validate_service("udio") == False
        assert settings.validate_service("") == False

    def test_database_url_sync(self):
        settings = TunesmithSettings(DATABASE_URL="postgresql+asyncpg://u:p@db:5432/tunes")

        assert settings.database_url_sync == "postgresql://u:p@db:5432/tunes"
