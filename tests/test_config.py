"""
Tests for configuration management system.

Tests cover:
- Defaults and the packaged config file
- Loading from an explicit YAML file
- Environment variable overrides
- Validation and deployability errors
"""

import pytest
import yaml

from rtalks.config.settings import (
    DEFAULT_JWT_SECRET,
    MAX_UPLOAD_BYTES,
    AppSettings,
    ConfigManager,
    RateLimitsConfig,
    get_config_manager,
)


@pytest.fixture(autouse=True)
def reset_config():
    """Reset config manager before each test."""
    ConfigManager.reset_instance()
    yield
    ConfigManager.reset_instance()


@pytest.fixture
def write_config(tmp_path):
    def _write(data, name="config.yaml"):
        path = tmp_path / name
        path.write_text(yaml.safe_dump(data))
        return str(path)

    return _write


class TestDefaults:

    def test_defaults(self):
        settings = AppSettings()

        assert settings.environment == "development"
        assert settings.api.port == 3000
        assert settings.uploads.max_size_bytes == MAX_UPLOAD_BYTES == 5 * 1024 * 1024
        assert settings.uploads.field_name == "image"
        assert settings.security.jwt_expiry_hours == 24
        assert not settings.is_production

    def test_default_rate_limits(self):
        limits = RateLimitsConfig()

        assert (limits.login.max_requests, limits.login.window_seconds) == (5, 900)
        assert (limits.upload.max_requests, limits.upload.window_seconds) == (10, 3600)
        assert (limits.general.max_requests, limits.general.window_seconds) == (100, 900)

    def test_unknown_route_class(self):
        with pytest.raises(ValueError, match="Invalid route class"):
            RateLimitsConfig().for_route_class("admin")

    def test_packaged_config_loads(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        settings = get_config_manager().load()

        assert settings.database.url == "sqlite:///rtalks.db"
        assert settings.logging.handlers["console"]["class"] == "logging.StreamHandler"


class TestYamlLoading:

    def test_load_explicit_file(self, write_config):
        path = write_config({
            "environment": "test",
            "uploads": {"base_path": "/srv/uploads", "max_size_bytes": 1024},
            "rate_limits": {"login": {"window_seconds": 60, "max_requests": 2}},
        })

        settings = AppSettings.from_yaml(path)

        assert settings.environment == "test"
        assert settings.uploads.base_path == "/srv/uploads"
        assert settings.uploads.max_size_bytes == 1024
        assert settings.rate_limits.login.max_requests == 2
        # Sections absent from the file keep their defaults
        assert settings.rate_limits.upload.max_requests == 10

    def test_config_path_env_var(self, write_config, monkeypatch):
        path = write_config({"api": {"port": 8080}})
        monkeypatch.setenv("RTALKS_CONFIG_PATH", path)

        assert get_config_manager().load().api.port == 8080
        assert get_config_manager().get_config_path() is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            AppSettings.from_yaml(str(tmp_path / "absent.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("api: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            AppSettings.from_yaml(str(path))

    def test_invalid_values(self, write_config):
        path = write_config({"api": {"port": 70000}})
        with pytest.raises(ValueError, match="validation failed"):
            AppSettings.from_yaml(path)

    def test_unknown_environment(self, write_config):
        path = write_config({"environment": "staging"})
        with pytest.raises(ValueError):
            AppSettings.from_yaml(path)


class TestEnvironmentOverrides:

    def test_env_overrides_yaml(self, write_config, monkeypatch):
        path = write_config({"uploads": {"max_size_bytes": 1024, "field_name": "photo"}})
        monkeypatch.setenv("RTALKS_UPLOADS__MAX_SIZE_BYTES", "2048")

        settings = AppSettings.from_yaml(path)

        assert settings.uploads.max_size_bytes == 2048
        assert settings.uploads.field_name == "photo"

    def test_env_sets_secret(self, monkeypatch):
        monkeypatch.setenv("RTALKS_SECURITY__JWT_SECRET", "from-env")
        assert AppSettings().security.jwt_secret == "from-env"

    def test_env_sets_environment(self, monkeypatch):
        monkeypatch.setenv("RTALKS_ENVIRONMENT", "production")
        assert AppSettings().is_production


class TestDeployability:

    def test_production_rejects_default_secret(self):
        settings = AppSettings(environment="production")
        assert settings.security.jwt_secret == DEFAULT_JWT_SECRET

        with pytest.raises(ValueError, match="JWT_SECRET"):
            settings.check_deployable()

    def test_production_with_secret_is_deployable(self):
        AppSettings(environment="production",
                    security={"jwt_secret": "real-secret"}).check_deployable()

    def test_development_tolerates_default_secret(self):
        AppSettings(environment="development").check_deployable()


class TestConfigManager:

    def test_singleton(self):
        assert get_config_manager() is get_config_manager()

    def test_dot_notation(self, write_config):
        path = write_config({"uploads": {"public_base_url": "https://cdn.example/u"}})
        manager = get_config_manager()
        manager.load(path)

        assert manager.get("uploads.public_base_url") == "https://cdn.example/u"
        assert manager.get("uploads.missing", "fallback") == "fallback"
        assert manager.get_config_path() == path

    def test_load_is_cached(self, write_config):
        path = write_config({"api": {"port": 4000}})
        manager = get_config_manager()
        first = manager.load(path)

        assert manager.load() is first
