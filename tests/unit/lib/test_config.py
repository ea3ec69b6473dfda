import pytest

from readstate import config
from readstate.errors import ConfigError


def test_config_loads_default_values():
    cfg = config.load_config()
    assert cfg["timeline"]["max_messages_per_conversation"] == 1000
    assert cfg["timeline"]["max_messages_per_room"] == 1000
    assert config.throttle_ms() == 300
    assert config.visibility_threshold() == 0.5


def test_user_config_is_merged_over_defaults(readstate_home):
    readstate_home.mkdir(parents=True)
    (readstate_home / "config.yaml").write_text("timeline:\n  max_messages_per_room: 50\n")

    assert config.max_messages("room") == 50
    assert config.max_messages("conversation") == 1000


def test_load_config_is_cached(readstate_home):
    first = config.load_config()
    readstate_home.mkdir(parents=True)
    (readstate_home / "config.yaml").write_text("viewport:\n  throttle_ms: 10\n")
    assert config.load_config() is first

    config.clear_cache()
    assert config.throttle_ms() == 10


@pytest.mark.parametrize(
    "content",
    [
        "timeline: []\n",
        "timeline:\n  max_messages_per_room: 0\n",
        "viewport:\n  throttle_ms: -1\n",
        "viewport:\n  visibility_threshold: 1.5\n",
        "- not a mapping\n",
    ],
)
def test_invalid_config_fails_fast(readstate_home, content):
    readstate_home.mkdir(parents=True)
    (readstate_home / "config.yaml").write_text(content)
    with pytest.raises(ConfigError):
        config.load_config()


def test_init_config_copies_defaults(readstate_home):
    path = config.init_config()
    assert path == readstate_home / "config.yaml"
    assert path.read_text() == config.get_default_config_path().read_text()

    path.write_text("cache:\n  db_file: other.db\n")
    assert config.init_config() == path
    assert "other.db" in path.read_text()


def test_cache_db_path(readstate_home):
    assert config.cache_db_path() == readstate_home / "cache.db"
