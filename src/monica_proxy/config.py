"""Configuration handling for the Monica proxy."""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    "upstream": {
        "url": "https://api.monica.im/api/custom_bot/chat",
        "cookie": "",
    },
    "settings": {"timeout": 60, "log_level": "INFO"},
    "streaming": {"flush_interval": 0.1, "buffer_size": 4096},
    "server": {"host": "0.0.0.0", "port": 8080},
}


def config_path() -> Path:
    """Location of config.yaml, overridable with MONICA_PROXY_CONFIG."""
    override = os.environ.get("MONICA_PROXY_CONFIG")
    if override:
        return Path(override)
    return Path(__file__).parent.parent.parent / "config.yaml"


def load_config() -> Dict[str, Dict[str, Any]]:
    """
    Load configuration from config.yaml.

    Sections missing from the file, and keys missing from a section, are
    filled in from DEFAULT_CONFIG. An unreadable or invalid file yields the
    defaults.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    try:
        loaded = yaml.safe_load(config_path().read_text()) or {}
        if not isinstance(loaded, dict):
            raise ValueError("top level of config.yaml must be a mapping")
        for section, values in loaded.items():
            if isinstance(values, dict):
                config.setdefault(section, {}).update(values)
            else:
                logger.warning(f"Ignoring config section {section!r}: not a mapping")
        logger.info("Successfully loaded configuration from config.yaml")
    except Exception as e:
        logger.error(f"Error loading config.yaml: {str(e)}")

    cookie = os.environ.get("MONICA_COOKIE")
    if cookie:
        config["upstream"]["cookie"] = cookie
    return config


config = load_config()

logging.basicConfig(
    level=getattr(logging, str(config["settings"].get("log_level", "INFO")).upper(), logging.INFO)
)

UPSTREAM_URL = config["upstream"]["url"]
UPSTREAM_COOKIE = config["upstream"]["cookie"]
TIMEOUT = config["settings"].get("timeout", 60)
FLUSH_INTERVAL = float(config["streaming"].get("flush_interval", 0.1))
BUFFER_SIZE = int(config["streaming"].get("buffer_size", 4096))
HOST = config["server"].get("host", "0.0.0.0")
PORT = int(config["server"].get("port", 8080))

if not UPSTREAM_COOKIE:
    logger.warning("MONICA_COOKIE not set, upstream requests will be unauthenticated")
