"""Tests for configuration helpers."""

from cw.core import config
from cw.core.config import Settings, settings


def test_settings_use_test_environment():
    """Test that the test suite runs against its own environment."""
    assert settings.env == "test"
    assert settings.get_database_url().startswith("sqlite:///")
    assert settings.get_database_url().endswith("test.sqlite3")


def test_data_dir_uses_xdg_data_home(monkeypatch, tmp_path):
    """Test that XDG_DATA_HOME decides where the database lives."""
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))

    assert config.data_dir() == tmp_path / "cw"
    assert config.get_db_path() == tmp_path / "cw" / "db.sqlite3"
    assert (tmp_path / "cw").is_dir()


def test_data_dir_defaults_to_local_share(monkeypatch, mocker, tmp_path):
    """Test the default data directory under the home directory."""
    monkeypatch.delenv("XDG_DATA_HOME", raising=False)
    mocker.patch("cw.core.config.home_dir", return_value=tmp_path)

    assert config.data_dir() == tmp_path / ".local" / "share" / "cw"


def test_log_path_uses_cache_dir(monkeypatch, mocker, tmp_path):
    """Test that the log file goes to the cache directory."""
    monkeypatch.delenv("XDG_CACHE_HOME", raising=False)
    mocker.patch("cw.core.config.home_dir", return_value=tmp_path)

    log_path = config.get_log_path()

    assert log_path == tmp_path / ".local" / "cache" / "cw" / "cw.log"
    assert log_path.parent.is_dir()


def test_database_url_falls_back_to_data_dir(monkeypatch, tmp_path):
    """Test the sqlite fallback when no database URL is configured."""
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    local = Settings(database_url="")

    assert local.get_database_url() == f"sqlite:///{tmp_path / 'cw' / 'db.sqlite3'}"


def test_explicit_database_url_wins():
    """Test that a configured database URL is used as is."""
    local = Settings(database_url="sqlite:///elsewhere.db")

    assert local.get_database_url() == "sqlite:///elsewhere.db"
