import logging
import os

from m3u_proxy.errors import ConfigError
from m3u_proxy.utilities import get_data_dir

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"
EMPTY_CONFIG = "{}"


def config_path(data_dir=None):
    return os.path.join(data_dir or get_data_dir(), CONFIG_FILE)


def read_config(data_dir=None):
    """Return the raw config.json contents, or an empty JSON object if there is none yet."""
    path = config_path(data_dir)

    if not os.path.exists(path):
        return EMPTY_CONFIG

    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except OSError as err:
        raise ConfigError(f"Failed to read config: {err}") from err


def write_config(data, data_dir=None):
    path = config_path(data_dir)

    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
    except OSError as err:
        raise ConfigError(f"Failed to create data dir: {err}") from err

    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(data)
    except OSError as err:
        raise ConfigError(f"Failed to write config: {err}") from err

    logger.debug(f"wrote config to {path}")
