import os
from pathlib import Path


def readstate_home() -> Path:
    override = os.environ.get("READSTATE_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".readstate"


def package_root() -> Path:
    return Path(__file__).resolve().parent.parent


def config_file() -> Path:
    """Return config file path in the readstate home."""
    return readstate_home() / "config.yaml"


def cache_db(db_file: str) -> Path:
    return readstate_home() / db_file
