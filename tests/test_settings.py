from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from snapsolve.config.provider_config import ProviderConfig
from snapsolve.config.settings import Settings
from snapsolve.config.store import EnvConfigProvider, YamlConfigStore

CREDENTIAL_ENV_VARS = (
    "SNAPSOLVE_API_KEY",
    "SNAPSOLVE_LLM_API_KEY",
    "SNAPSOLVE_OPENAI_API_KEY",
    "OPENAI_API_KEY",
    "SNAPSOLVE_GEMINI_API_KEY",
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
    "SNAPSOLVE_API_PROVIDER",
)


def _clear_credentials(monkeypatch) -> None:
    for name in CREDENTIAL_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_settings_reads_prefixed_env_and_provider_key_aliases(monkeypatch) -> None:
    _clear_credentials(monkeypatch)
    monkeypatch.setenv("SNAPSOLVE_API_PROVIDER", "openai")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("SNAPSOLVE_LANGUAGE", "python")

    config = Settings(_env_file=None).provider_config()

    assert config.api_provider == "openai"
    assert config.api_key == "sk-env"
    assert config.language == "python"


def test_settings_generic_key_wins_over_provider_key(monkeypatch) -> None:
    _clear_credentials(monkeypatch)
    monkeypatch.setenv("GEMINI_API_KEY", "gm-provider")
    monkeypatch.setenv("SNAPSOLVE_API_KEY", "generic")

    settings = Settings(_env_file=None)

    assert settings.credential_for("gemini") == "generic"
    assert settings.provider_config().api_key == "generic"


def test_settings_resolves_relative_config_path(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SNAPSOLVE_CONFIG_PATH", "conf/app.yaml")

    settings = Settings(_env_file=None)

    assert settings.resolved_config_path == (tmp_path / "conf/app.yaml").resolve()


def test_provider_config_model_defaults_and_masking() -> None:
    config = ProviderConfig(api_provider="openai", api_key="  sk-secret  ", solution_model="o3")

    assert config.api_key == "sk-secret"
    assert config.model_for("extraction") == "gpt-4o"
    assert config.model_for("solution") == "o3"
    assert ProviderConfig().model_for("debugging") == "gemini-2.0-flash"
    assert config.masked()["api_key"] == "sk-s***"
    assert ProviderConfig().masked()["api_key"] == ""


def test_provider_config_rejects_unknown_fields() -> None:
    with pytest.raises(ValidationError):
        ProviderConfig(api_provider="anthropic")
    with pytest.raises(ValidationError):
        ProviderConfig(unknown_field=1)


def test_yaml_store_layers_file_over_defaults(tmp_path: Path) -> None:
    path = tmp_path / "snapsolve.yaml"
    path.write_text("language: go\nsolution_model: gemini-2.5-pro\n", encoding="utf-8")
    store = YamlConfigStore(path, defaults=ProviderConfig(api_key="gm-default"))

    config = store.load()

    assert config.api_key == "gm-default"
    assert config.language == "go"
    assert config.solution_model == "gemini-2.5-pro"


def test_yaml_store_save_persists_and_notifies(tmp_path: Path) -> None:
    store = YamlConfigStore(tmp_path / "nested" / "snapsolve.yaml")
    received: list[ProviderConfig] = []
    unsubscribe = store.subscribe(received.append)

    saved = store.save({"api_provider": "openai", "api_key": "sk-1"})

    assert received == [saved]
    assert store.load() == saved

    unsubscribe()
    store.save(saved.model_copy(update={"language": "java"}))
    assert received == [saved]
    assert store.load().language == "java"


def test_yaml_store_rejects_non_mapping_root(tmp_path: Path) -> None:
    path = tmp_path / "snapsolve.yaml"
    path.write_text("- not\n- a mapping\n", encoding="utf-8")

    with pytest.raises(ValueError, match="object root"):
        YamlConfigStore(path).load()


def test_env_config_provider_wraps_settings(monkeypatch) -> None:
    _clear_credentials(monkeypatch)
    monkeypatch.setenv("GOOGLE_API_KEY", "gm-google")

    provider = EnvConfigProvider(Settings(_env_file=None))

    assert provider.load().api_key == "gm-google"
    assert provider.load().api_provider == "gemini"
