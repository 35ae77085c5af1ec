"""Configuration providers: hand the scanner an immutable AppConfig."""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from pydantic import ValidationError

from ghpolicies.core.config import Settings, settings
from ghpolicies.core.exceptions import ConfigurationNotFoundError, InvalidConfigurationError
from ghpolicies.schemas.config import AppConfig

logger = logging.getLogger("ghpolicies.configuration")


class ConfigurationProvider(ABC):
    """Source of the active policy configuration."""

    @abstractmethod
    def get_config(self, force_refresh: bool = False) -> AppConfig:
        """Return the active configuration.

        Raises:
            ConfigurationNotFoundError: If no configuration is present.
            InvalidConfigurationError: If it is malformed or incomplete.
        """
        ...


class StaticConfigurationProvider(ConfigurationProvider):
    """Serves a configuration built in memory."""

    def __init__(self, config: AppConfig):
        self._config = config

    def get_config(self, force_refresh: bool = False) -> AppConfig:
        return self._config


class ConfigurationService(ConfigurationProvider):
    """Reads ``POLICY_CONFIG_JSON`` from the settings and caches the result.

    ``force_refresh`` re-reads the environment. The cache uses double-checked
    locking so concurrent callers share a single load.
    """

    def __init__(
        self,
        settings_factory: Callable[[], Settings] = Settings,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._settings_factory = settings_factory
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.CONFIG_CACHE_TTL_SECONDS
        self._clock = clock
        self._config: Optional[AppConfig] = None
        self._loaded_at = 0.0
        self._lock = threading.Lock()

    def get_config(self, force_refresh: bool = False) -> AppConfig:
        cached = self._cached()
        if not force_refresh and cached is not None:
            return cached

        with self._lock:
            cached = self._cached()
            if not force_refresh and cached is not None:
                logger.debug("Configuration found in cache after acquiring lock")
                return cached

            config = self._load()
            self._config = config
            self._loaded_at = self._clock()
            logger.info("Configuration loaded: %d policies, authorized team '%s'",
                        len(config.policies), config.access_control.authorized_team)
            return config

    def invalidate(self) -> None:
        with self._lock:
            self._config = None

    def _cached(self) -> Optional[AppConfig]:
        if self._config is not None and self._clock() - self._loaded_at < self._ttl:
            return self._config
        return None

    def _load(self) -> AppConfig:
        raw = self._settings_factory().POLICY_CONFIG_JSON
        if not raw or not raw.strip():
            logger.warning("POLICY_CONFIG_JSON is not set")
            raise ConfigurationNotFoundError("No policy configuration is present (POLICY_CONFIG_JSON).")

        try:
            config = AppConfig.model_validate_json(raw)
        except ValidationError as e:
            logger.error("Policy configuration is malformed: %s", e)
            raise InvalidConfigurationError(f"The policy configuration is malformed: {e}") from e

        if not config.access_control.authorized_team.strip():
            logger.error("Configuration is invalid: 'access_control.authorized_team' is missing")
            raise InvalidConfigurationError(
                "Configuration is invalid: 'access_control.authorized_team' must be set."
            )
        return config
