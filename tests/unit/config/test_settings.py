"""Unit tests for Settings class and get_settings function."""

from pathlib import Path

import pytest

from supportflow.config import get_settings, reload_settings
from supportflow.config.settings import Settings, set_toml_config


class TestSettings:
    """Tests for Settings model."""

    def test_default_values(self) -> None:
        """Settings has sensible defaults."""
        settings = Settings()
        assert settings.app_name == "supportflow"
        assert settings.debug is False
        assert settings.log_level == "INFO"

    def test_orchestration_defaults(self) -> None:
        """Orchestration sections carry the documented defaults."""
        settings = Settings()
        assert settings.tool_loop.max_iterations == 15
        assert settings.lock.ttl_seconds == 120
        assert settings.retrieval.playbook_threshold == 0.7
        assert settings.retrieval.similarity_threshold == 0.4
        assert settings.retrieval.max_document_chars == 8000
        assert settings.planner.language_pin_max_customer_messages == 4

    def test_guardrail_defaults(self) -> None:
        """Confidence weights and thresholds have defaults."""
        confidence = Settings().guardrails.confidence
        assert confidence.high_threshold == 0.8
        assert confidence.medium_threshold == 0.5
        assert (
            confidence.grounding_weight,
            confidence.retrieval_weight,
            confidence.certainty_weight,
        ) == (0.6, 0.3, 0.1)
        assert confidence.recheck.max_documents == 10
        assert confidence.recheck.similarity_threshold == 0.3

    def test_every_step_has_a_model(self) -> None:
        steps = Settings().providers.steps()
        assert set(steps) == {
            "perception",
            "agent_selection",
            "closure",
            "title",
            "playbook_selection",
            "planner",
            "company_interest",
            "confidence",
            "translation",
        }
        assert all(s.model == "mock/default" for s in steps.values())

    def test_toml_values_override_defaults(self) -> None:
        set_toml_config({"tool_loop": {"max_iterations": 3}, "debug": True})
        settings = Settings()
        assert settings.tool_loop.max_iterations == 3
        assert settings.debug is True

    def test_env_overrides_toml(self, env_override) -> None:
        """Environment variables win over TOML values."""
        set_toml_config({"tool_loop": {"max_iterations": 3}})
        with env_override({"SUPPORTFLOW_TOOL_LOOP__MAX_ITERATIONS": "7"}):
            settings = Settings()
        assert settings.tool_loop.max_iterations == 7

    def test_invalid_value_rejected(self) -> None:
        set_toml_config({"tool_loop": {"max_iterations": 0}})
        with pytest.raises(ValueError):
            Settings()


class TestGetSettings:
    """Tests for get_settings function."""

    def test_returns_settings_instance(
        self, test_config_dir: Path, mock_toml_files, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """get_settings returns a Settings instance."""
        mock_toml_files({"default.toml": "app_name = 'test'"})
        monkeypatch.setenv("SUPPORTFLOW_CONFIG_DIR", str(test_config_dir))
        monkeypatch.setenv("SUPPORTFLOW_ENV", "nonexistent")

        settings = get_settings()
        assert isinstance(settings, Settings)
        assert settings.app_name == "test"

    def test_settings_cached(
        self, test_config_dir: Path, mock_toml_files, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """get_settings returns cached instance."""
        mock_toml_files({"default.toml": "app_name = 'test'"})
        monkeypatch.setenv("SUPPORTFLOW_CONFIG_DIR", str(test_config_dir))

        assert get_settings() is get_settings()

    def test_reload_settings_reads_files_again(
        self, test_config_dir: Path, mock_toml_files, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """reload_settings picks up changed files."""
        mock_toml_files({"default.toml": "app_name = 'first'"})
        monkeypatch.setenv("SUPPORTFLOW_CONFIG_DIR", str(test_config_dir))
        monkeypatch.setenv("SUPPORTFLOW_ENV", "nonexistent")
        assert get_settings().app_name == "first"

        mock_toml_files({"default.toml": "app_name = 'second'"})
        assert get_settings().app_name == "first"
        assert reload_settings().app_name == "second"
