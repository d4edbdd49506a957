"""Unit tests for the app_config module."""
import os
from dataclasses import FrozenInstanceError, replace
from unittest.mock import MagicMock, mock_open, patch

import pytest
import yaml

from nexti18n.app_config import (
    AppConfig,
    build_app_config,
    create_openai_client,
    load_app_config,
    parse_locale_list,
    validate_config
)
from nexti18n.errors import ConfigurationError


class TestAppConfig:
    """Test cases for the AppConfig dataclass."""

    def test_defaults(self):
        config = AppConfig()
        assert config.reference_locale == "es"
        assert config.additional_locales == ("en", "fr", "de", "zh", "ar", "pt", "ru", "ja")
        assert config.locale_folder == "public/locales"
        assert config.model_name == "gpt-4o-mini"
        assert config.max_concurrent_api_calls == 20
        assert config.max_retries == 2
        assert config.dry_run is False

    def test_is_immutable(self):
        with pytest.raises(FrozenInstanceError):
            AppConfig().model_name = "other"

    def test_reference_is_not_a_target(self):
        config = AppConfig(reference_locale="en", additional_locales=("en", "fr"))
        assert config.target_locales == ["fr"]
        assert config.all_locales == ["en", "fr"]

    def test_api_key_is_not_in_repr(self):
        assert "sk-secret" not in repr(AppConfig(api_key="sk-secret"))


class TestParseLocaleList:
    def test_accepts_strings_and_lists(self):
        assert parse_locale_list("en, fr,,de ") == ("en", "fr", "de")
        assert parse_locale_list(["en", " fr "]) == ("en", "fr")
        assert parse_locale_list(None) == ()


class TestValidateConfig:
    def test_valid_config_passes(self):
        config = AppConfig(api_key="sk-test")
        assert validate_config(config) is config

    @pytest.mark.parametrize("overrides", [
        {"reference_locale": ""},
        {"additional_locales": ()},
        {"additional_locales": ("es",)},
        {"additional_locales": ("en", "en")},
        {"max_concurrent_api_calls": 0},
        {"max_retries": -1},
        {"batch_chunk_size": 0},
        {"request_timeout_seconds": 0},
        {"translation_mode": "paragraph"},
        {"concurrency_strategy": "threads"},
        {"refactor": False, "translate": False},
        {"api_key": None},
    ])
    def test_rejects_unusable_values(self, overrides):
        with pytest.raises(ConfigurationError):
            validate_config(replace(AppConfig(api_key="sk-test"), **overrides))

    def test_dry_run_does_not_need_a_key(self):
        validate_config(AppConfig(dry_run=True))


class TestBuildAppConfig:
    def test_environment_overrides_file(self):
        raw = {"model_name": "gpt-4o", "max_concurrent_api_calls": 3, "additional_locales": ["en", "de"]}
        environ = {"OPENAI_MODEL": "gpt-4.1-mini", "MAX_CONCURRENT_REQUESTS": "9", "OPENAI_API_KEY": "sk-env"}

        config = build_app_config(raw, environ)

        assert config.model_name == "gpt-4.1-mini"
        assert config.max_concurrent_api_calls == 9
        assert config.additional_locales == ("en", "de")
        assert config.api_key == "sk-env"

    def test_invalid_number_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            build_app_config({"batch_chunk_size": "many"}, {})


class TestLoadAppConfig:
    """Test cases for the load_app_config function."""

    def test_load_config_with_valid_yaml_file(self):
        mock_config = {
            "reference_locale": "de",
            "additional_locales": "en,fr",
            "locale_folder": "locales",
            "translation_mode": "leaf",
            "dry_run": True,
            "logging": {"log_level": "DEBUG", "log_file_path": "test.log"}
        }

        with patch("builtins.open", mock_open(read_data=yaml.dump(mock_config))):
            with patch("os.path.exists", side_effect=lambda path: path.endswith("config.yaml")):
                with patch("nexti18n.app_config.setup_logger") as mock_logger:
                    mock_logger.return_value = MagicMock()
                    with patch.dict(os.environ, {}, clear=True):
                        config = load_app_config(project_root="/project")

        assert config.reference_locale == "de"
        assert config.target_locales == ["en", "fr"]
        assert config.locale_folder == "locales"
        assert config.translation_mode == "leaf"
        assert config.dry_run is True
        mock_logger.assert_called_once_with("DEBUG", "", True)

    def test_log_file_is_kept_outside_dry_run(self):
        mock_config = {"logging": {"log_level": "info", "log_file_path": "run.log", "log_to_console": False}}

        with patch("builtins.open", mock_open(read_data=yaml.dump(mock_config))):
            with patch("os.path.exists", side_effect=lambda path: path.endswith("config.yaml")):
                with patch("nexti18n.app_config.setup_logger") as mock_logger:
                    with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test"}, clear=True):
                        load_app_config(project_root="/project")
                        load_app_config(project_root="/project", overrides={"dry_run": True})

        assert mock_logger.call_args_list[0].args == ("INFO", "run.log", False)
        assert mock_logger.call_args_list[1].args == ("INFO", "", False)

    def test_missing_file_uses_defaults(self, capsys):
        with patch("os.path.exists", return_value=False):
            with patch("nexti18n.app_config.setup_logger", return_value=MagicMock()):
                with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test"}, clear=True):
                    config = load_app_config(project_root="/project")

        assert config == AppConfig(api_key="sk-test")
        assert "not found" in capsys.readouterr().err

    def test_invalid_yaml_uses_defaults(self, capsys):
        with patch("builtins.open", mock_open(read_data="key: [unclosed")):
            with patch("os.path.exists", side_effect=lambda path: path.endswith("config.yaml")):
                with patch("nexti18n.app_config.setup_logger", return_value=MagicMock()):
                    with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test"}, clear=True):
                        config = load_app_config(project_root="/project")

        assert config.model_name == "gpt-4o-mini"
        assert "Invalid YAML" in capsys.readouterr().err

    def test_overrides_win_and_none_is_ignored(self):
        with patch("os.path.exists", return_value=False):
            with patch("nexti18n.app_config.setup_logger", return_value=MagicMock()):
                with patch.dict(os.environ, {}, clear=True):
                    config = load_app_config(project_root="/project",
                                             overrides={"dry_run": True, "model_name": None, "namespace": "home"})

        assert config.dry_run is True
        assert config.model_name == "gpt-4o-mini"
        assert config.namespace == "home"

    def test_unusable_configuration_raises(self):
        with patch("os.path.exists", return_value=False):
            with patch("nexti18n.app_config.setup_logger", return_value=MagicMock()):
                with patch.dict(os.environ, {}, clear=True):
                    with pytest.raises(ConfigurationError):
                        load_app_config(project_root="/project")


class TestCreateOpenAIClient:
    def test_dry_run_has_no_client(self):
        assert create_openai_client(AppConfig(dry_run=True)) is None

    def test_client_uses_configured_key(self):
        with patch("nexti18n.app_config.AsyncOpenAI") as mock_openai:
            client = create_openai_client(AppConfig(api_key="sk-test"))
        mock_openai.assert_called_once_with(api_key="sk-test")
        assert client is mock_openai.return_value

    def test_missing_key_raises(self):
        with pytest.raises(ConfigurationError):
            create_openai_client(AppConfig())
