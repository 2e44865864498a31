from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol

import yaml

from snapsolve.config.provider_config import ProviderConfig
from snapsolve.config.settings import Settings

logger = logging.getLogger(__name__)

ConfigListener = Callable[[ProviderConfig], None]


class ConfigProvider(Protocol):
    def load(self) -> ProviderConfig: ...

    def subscribe(self, listener: ConfigListener) -> Callable[[], None]: ...


class _ListenerRegistry:
    def __init__(self) -> None:
        self._listeners: list[ConfigListener] = []

    def subscribe(self, listener: ConfigListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, config: ProviderConfig) -> None:
        for listener in list(self._listeners):
            listener(config)


class EnvConfigProvider(_ListenerRegistry):
    """Reads provider configuration from environment-backed settings only."""

    def __init__(self, settings: Settings) -> None:
        super().__init__()
        self._settings = settings

    def load(self) -> ProviderConfig:
        return self._settings.provider_config()


class YamlConfigStore(_ListenerRegistry):
    """YAML file layered over environment defaults.

    `save` persists the merged config and fires the config-updated notification
    so that the orchestrator can drop its current provider session.
    """

    def __init__(self, path: Path | str, *, defaults: ProviderConfig | None = None) -> None:
        super().__init__()
        self.path = Path(path)
        self._defaults = defaults or ProviderConfig()

    def load(self) -> ProviderConfig:
        data = self._defaults.model_dump()
        data.update(self._read_file())
        return ProviderConfig.model_validate(data)

    def save(self, updates: ProviderConfig | Mapping[str, Any]) -> ProviderConfig:
        if isinstance(updates, ProviderConfig):
            config = updates
        else:
            merged = self.load().model_dump()
            merged.update(updates)
            config = ProviderConfig.model_validate(merged)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            yaml.safe_dump(config.model_dump(), sort_keys=False, allow_unicode=True),
            encoding="utf-8",
        )
        logger.info(
            "Provider configuration saved",
            extra={"metrics": {"api_provider": config.api_provider}},
        )
        self.notify(config)
        return config

    def _read_file(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}

        with self.path.open("r", encoding="utf-8") as file:
            data = yaml.safe_load(file) or {}

        if not isinstance(data, dict):
            raise ValueError(f"YAML config must contain object root: {self.path}")

        return data
