"""Tests for settings loading and cost estimation."""
import pytest

from derm_service.config import Settings
from derm_service.cost_estimation import estimate_diagnosis_cost, estimate_vision_cost


class TestSettingsFromEnv:
    """Test Settings.from_env."""

    def test_defaults(self, monkeypatch):
        for name in ["OPENAI_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY", "AI_MAX_RETRIES",
                     "VISION_TIMEOUT_SECONDS", "ALLOWED_IMAGE_HOSTS", "SERVICE_API_KEY"]:
            monkeypatch.delenv(name, raising=False)
        settings = Settings.from_env(load_dotenv_file=False)
        assert settings.vision_api_key is None
        assert settings.vision_model == "gpt-4o"
        assert settings.vision_timeout_seconds == 25.0
        assert settings.diagnosis_timeout_seconds == 20.0
        assert settings.ai_max_retries == 2
        assert settings.signed_url_ttl_seconds == 300
        assert settings.allowed_image_hosts == ()

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-live")
        monkeypatch.setenv("GOOGLE_API_KEY", "g-key")
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.setenv("AI_MAX_RETRIES", "4")
        monkeypatch.setenv("ALLOWED_IMAGE_HOSTS", "CDN.example.com, photos.example.org")
        monkeypatch.setenv("LOG_FORMAT", "TEXT")
        settings = Settings.from_env(load_dotenv_file=False)
        assert settings.vision_api_key == "sk-live"
        assert settings.diagnosis_api_key == "g-key"
        assert settings.ai_max_retries == 4
        assert settings.allowed_image_hosts == ("cdn.example.com", "photos.example.org")
        assert settings.log_format == "text"

    def test_empty_key_is_unset(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "")
        assert Settings.from_env(load_dotenv_file=False).vision_api_key is None


class TestCostEstimation:

    @pytest.mark.parametrize("images,expected", [(1, 0.015), (3, 0.035), (5, 0.055)])
    def test_vision_gpt4o(self, images, expected):
        assert estimate_vision_cost("gpt-4o", images) == pytest.approx(expected)

    def test_vision_unknown_model_uses_default(self):
        assert estimate_vision_cost("some-new-model", 2) == estimate_vision_cost("gpt-4o", 2)

    def test_diagnosis_flat(self):
        assert estimate_diagnosis_cost("gemini-2.5-flash") == 0.002
        assert estimate_diagnosis_cost("unknown") == 0.002
