import pytest
from pathlib import Path

from config.settings import load_settings, ConfigurationError, Settings


def test_load_settings_success(mock_env):
    """Test loading settings with valid environment variables."""
    settings = load_settings()

    assert isinstance(settings, Settings)
    assert settings.buildium.base_url == "https://api.buildium.test/v1"
    assert settings.buildium.client_id == "client-id-123456"
    assert settings.hubspot.base_url == "https://api.hubapi.com"
    assert settings.sync.batch_size == 50
    assert settings.sync.limit is None
    assert settings.sync.dry_run is False
    assert settings.storage.database_path == Path("data/lease_sync.db")


def test_sync_overrides(mock_env):
    """Test sync options read from the environment."""
    mock_env.setenv("SYNC_DRY_RUN", "true")
    mock_env.setenv("SYNC_BATCH_SIZE", "10")
    mock_env.setenv("SYNC_LIMIT", "0")
    mock_env.setenv("SYNC_REQUEST_TIMEOUT", "12.5")

    settings = load_settings()

    assert settings.sync.dry_run is True
    assert settings.sync.batch_size == 10
    assert settings.sync.limit == 0
    assert settings.sync.request_timeout == 12.5


def test_lookback_days(mock_env):
    """Test the incremental fetch overlap setting."""
    assert load_settings().sync.lookback_days == 7

    mock_env.setenv("SYNC_LOOKBACK_DAYS", "0")
    assert load_settings().sync.lookback_days == 0


def test_load_settings_missing_buildium_url(mock_env):
    """Test error when Buildium URL is missing."""
    mock_env.delenv("BUILDIUM_BASE_URL")

    with pytest.raises(ConfigurationError, match="BUILDIUM_BASE_URL is required"):
        load_settings()


def test_load_settings_missing_token(mock_env):
    mock_env.delenv("HUBSPOT_ACCESS_TOKEN")

    with pytest.raises(ConfigurationError, match="HUBSPOT_ACCESS_TOKEN is required"):
        load_settings()


def test_load_settings_invalid_url(mock_env):
    """Test error when Buildium URL is not HTTPS."""
    mock_env.setenv("BUILDIUM_BASE_URL", "http://insecure.test")

    with pytest.raises(ConfigurationError, match="must use HTTPS"):
        load_settings()


@pytest.mark.parametrize("name,value", [
    ("SYNC_BATCH_SIZE", "0"),
    ("SYNC_BATCH_SIZE", "many"),
    ("SYNC_LIMIT", "-1"),
    ("SYNC_DRY_RUN", "maybe"),
    ("SYNC_LOOKBACK_DAYS", "-1"),
])
def test_invalid_sync_values(mock_env, name, value):
    mock_env.setenv(name, value)

    with pytest.raises(ConfigurationError, match=name):
        load_settings()


def test_secrets_not_in_repr(mock_env):
    settings = load_settings()
    text = repr(settings)

    assert "super-secret" not in text
    assert "pat-na1-token" not in text


def test_env_file(clean_env, tmp_path):
    """Test .env loading with quotes, comments and environment precedence."""
    env_file = tmp_path / "custom.env"
    env_file.write_text(
        "# Buildium\n"
        "export BUILDIUM_BASE_URL=\"https://file.buildium.test\"\n"
        "BUILDIUM_CLIENT_ID='file-client'\n"
        "BUILDIUM_CLIENT_SECRET=file-secret\n"
        "HUBSPOT_ACCESS_TOKEN=file-token\n"
        "not a setting\n"
    )
    clean_env.setenv("BUILDIUM_CLIENT_ID", "env-client")

    settings = load_settings(env_file=env_file)

    assert settings.buildium.base_url == "https://file.buildium.test"
    assert settings.buildium.client_id == "env-client"
    assert settings.hubspot.access_token == "file-token"
