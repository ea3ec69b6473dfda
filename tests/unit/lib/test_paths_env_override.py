from pathlib import Path

from readstate.lib import paths


def test_readstate_home_respects_env_var(monkeypatch):
    """READSTATE_HOME env var should override default ~/.readstate path."""
    monkeypatch.setenv("READSTATE_HOME", "/custom/readstate")
    assert paths.readstate_home() == Path("/custom/readstate")


def test_readstate_home_expands_user(monkeypatch):
    monkeypatch.setenv("READSTATE_HOME", "~/altstate")
    assert paths.readstate_home() == Path.home() / "altstate"


def test_readstate_home_default(monkeypatch):
    monkeypatch.delenv("READSTATE_HOME", raising=False)
    assert paths.readstate_home() == Path.home() / ".readstate"


def test_derived_paths(monkeypatch):
    monkeypatch.setenv("READSTATE_HOME", "/data")
    assert paths.config_file() == Path("/data/config.yaml")
    assert paths.cache_db("cache.db") == Path("/data/cache.db")
    assert (paths.package_root() / "config.yaml").exists()
