"""
RTalks configuration.

Settings are read from a YAML file and can be overridden per key by
environment variables named RTALKS_<SECTION>__<KEY>, for example
RTALKS_UPLOADS__BASE_PATH=/srv/uploads.

The file is looked up in this order: $RTALKS_CONFIG_PATH, ./config.yaml,
then the config.yaml shipped inside this package.
"""

from __future__ import annotations

import os
import yaml
import logging
from typing import Any, ClassVar, Literal
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource


# Config loads before logging is configured, so this is a plain stdlib logger
_basic_logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "RTALKS_CONFIG_PATH"
PACKAGED_CONFIG = os.path.join(os.path.dirname(__file__), "config.yaml")

DEFAULT_JWT_SECRET = "rtalks-development-secret-change-me"
PRODUCTION_UPLOAD_PATH = "/opt/render/project/uploads"
MAX_UPLOAD_BYTES = 5 * 1024 * 1024


class APISettings(BaseModel):
    """API configuration."""
    host: str = Field(default="0.0.0.0", description="Host for uvicorn")
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="Port for uvicorn")
    version: str = Field(default="1.0.0", description="Reported API version")


class DatabaseSettings(BaseModel):
    """Relational store configuration."""
    url: str = Field(
        default="sqlite:///rtalks.db",
        description="SQLAlchemy connection URL"
    )
    pool_size: int = Field(default=5, ge=1, le=100)
    echo: bool = Field(default=False)


class SecuritySettings(BaseModel):
    """Token signing and request-origin configuration."""
    jwt_secret: str = Field(
        default=DEFAULT_JWT_SECRET,
        description="HMAC secret used to sign admin tokens")
    jwt_key_id: str = Field(
        default="primary",
        description="Signing-key identifier embedded in issued tokens")
    jwt_expiry_hours: int = Field(default=24, ge=1, le=24 * 30)
    allowed_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="CORS origins honoured in production")
    trust_proxy_headers: bool = Field(
        default=False,
        description="Use the first X-Forwarded-For hop as the client address")


class UploadSettings(BaseModel):
    """Upload storage configuration."""
    base_path: str | None = Field(
        default=None,
        description="Override for the upload directory")
    public_base_url: str | None = Field(
        default=None,
        description="External base URL prefixed to stored filenames")
    max_size_bytes: int = Field(default=MAX_UPLOAD_BYTES, ge=1)
    field_name: str = Field(default="image")
    chunk_size: int = Field(default=64 * 1024, ge=1024)


class RateLimitSettings(BaseModel):
    """Fixed-window rate limit for one route class."""
    window_seconds: int = Field(default=15 * 60, ge=1)
    max_requests: int = Field(default=100, ge=1)


class RateLimitsConfig(BaseModel):
    """Rate limits per route class."""
    login: RateLimitSettings = Field(
        default_factory=lambda: RateLimitSettings(
            window_seconds=15 * 60, max_requests=5))
    upload: RateLimitSettings = Field(
        default_factory=lambda: RateLimitSettings(
            window_seconds=60 * 60, max_requests=10))
    general: RateLimitSettings = Field(
        default_factory=lambda: RateLimitSettings(
            window_seconds=15 * 60, max_requests=100))

    def for_route_class(self, route_class: str) -> RateLimitSettings:
        """Return the limits for a route class."""
        try:
            return getattr(self, route_class)
        except AttributeError:
            raise ValueError(
                f"Invalid route class: {route_class}. "
                "Valid classes: login, upload, general")


class LoggingSettings(BaseModel):
    """A ``logging.config.dictConfig`` mapping, passed through as-is."""
    version: int = Field(default=1)
    disable_existing_loggers: bool = Field(default=False)
    formatters: dict[str, Any] = Field(default_factory=dict)
    handlers: dict[str, Any] = Field(default_factory=dict)
    root: dict[str, Any] = Field(default_factory=dict)
    loggers: dict[str, Any] = Field(default_factory=dict)

    # dictConfig accepts keys such as "filters" and "incremental"
    model_config = {'extra': 'allow'}


def config_search_paths() -> list[str]:
    """Candidate config files, most specific first."""
    return [
        os.getenv(CONFIG_PATH_ENV, ""),
        os.path.join(os.getcwd(), "config.yaml"),
        PACKAGED_CONFIG,
    ]


def find_config_file() -> str:
    """
    Return the first existing config file.

    Raises:
        FileNotFoundError: If none of the search paths exists
    """
    candidates = [p for p in config_search_paths() if p]
    for candidate in candidates:
        if os.path.isfile(candidate):
            _basic_logger.debug(f"Using config file {candidate}")
            return candidate

    listing = "\n".join(f"  - {p}" for p in candidates)
    message = (
        f"No config.yaml found. Looked in:\n{listing}\n"
        f"Set {CONFIG_PATH_ENV} or place config.yaml in the working directory."
    )
    _basic_logger.error(message)
    raise FileNotFoundError(message)


def read_config_file(config_path: str) -> dict[str, Any]:
    """
    Parse a YAML config file into a mapping.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If it is not valid YAML or not a mapping
    """
    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Config file does not exist: {config_path}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a mapping at the top level")
    return data


class _FileValues(PydanticBaseSettingsSource):
    """Lowest-priority source: values parsed from the YAML file being loaded."""

    def __init__(self, settings_cls: type[BaseSettings], values: dict[str, Any]):
        super().__init__(settings_cls)
        self.values = values

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        return self.values.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return dict(self.values)


class AppSettings(BaseSettings):
    """
    Settings for one RTalks process.

    Explicit keyword arguments win over ``RTALKS_*`` environment variables,
    which win over the YAML file passed to ``from_yaml``.
    """

    environment: Literal["development", "production", "test"] = Field(
        default="development")
    api: APISettings = Field(default_factory=APISettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    uploads: UploadSettings = Field(default_factory=UploadSettings)
    rate_limits: RateLimitsConfig = Field(default_factory=RateLimitsConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_prefix="RTALKS_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Set only while from_yaml constructs an instance
    _file_values: ClassVar[dict[str, Any]] = {}

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, env_settings, _FileValues(settings_cls, cls._file_values)

    @classmethod
    def from_yaml(cls, config_path: str | None = None) -> 'AppSettings':
        """
        Build settings from a YAML file, found on the search path if not given.

        Raises:
            FileNotFoundError: If the file is missing
            ValueError: If the file is not valid YAML or fails validation
        """
        config_path = config_path or find_config_file()
        _basic_logger.info(f"Reading configuration from {config_path}")
        values = read_config_file(config_path)

        cls._file_values = values
        try:
            return cls()
        except ValidationError as e:
            _basic_logger.error(f"Invalid configuration in {config_path}: {e}")
            raise ValueError(f"Configuration validation failed for {config_path}:\n{e}")
        finally:
            cls._file_values = {}

    def check_deployable(self) -> None:
        """
        Refuse configurations that must never serve production traffic.

        Raises:
            ValueError: If running in production with the development secret
        """
        if self.is_production and self.security.jwt_secret == DEFAULT_JWT_SECRET:
            raise ValueError(
                "RTALKS_SECURITY__JWT_SECRET must be set in production")


class ConfigManager:
    """
    Process-wide holder of the loaded ``AppSettings``.

    Components receive settings explicitly; only the entry points (ASGI app
    factory, CLI) go through here.
    """

    _instance: 'ConfigManager' | None = None

    def __init__(self):
        self._settings: AppSettings | None = None
        self._config_path: str | None = None

    @classmethod
    def get_instance(cls) -> 'ConfigManager':
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Forget the loaded settings; tests call this between cases."""
        cls._instance = None

    def load(self, config_path: str | None = None) -> AppSettings:
        """
        Load settings, reusing the cached ones unless a path is given.

        ``get_config_path`` reports the explicit path only; a file found on
        the search path leaves it None.
        """
        if config_path is None and self._settings is not None:
            return self._settings

        self._settings = AppSettings.from_yaml(config_path)
        self._config_path = config_path
        return self._settings

    @property
    def settings(self) -> AppSettings:
        return self._settings if self._settings is not None else self.load()

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a dotted key such as ``"uploads.base_path"``."""
        node: Any = self.settings.model_dump()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def get_config_path(self) -> str | None:
        return self._config_path

    @property
    def logging_config(self) -> dict[str, Any]:
        return self.settings.logging.model_dump()


def get_config_manager() -> ConfigManager:
    return ConfigManager.get_instance()
