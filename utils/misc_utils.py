import logging
import os
from typing import Any, Dict, Optional

import yaml

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def make_directory(path):
    """Create directory if it doesn't exist."""
    if "." in os.path.basename(path):
        dir_path = os.path.dirname(path)
    else:
        dir_path = path

    if dir_path and not os.path.exists(dir_path):
        os.makedirs(dir_path)


def load_yaml(filename):
    """Load YAML file"""
    with open(filename, "r", encoding="utf-8") as file:
        return yaml.safe_load(file)


def load_config(config_path: Optional[str], defaults: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay the YAML mapping at `config_path` on a copy of `defaults`.

    Raises ValueError for invalid YAML, a non-mapping document, or keys absent
    from `defaults`.
    """
    config = dict(defaults)
    if not config_path:
        return config

    try:
        data = load_yaml(config_path)
    except yaml.YAMLError as e:
        raise ValueError(f"config file {config_path} is not valid YAML: {e}")
    if data is None:
        return config
    if not isinstance(data, dict):
        raise ValueError(f"config file {config_path} must contain a mapping")

    unknown = sorted(set(data) - set(defaults))
    if unknown:
        raise ValueError(f"unknown keys in config file {config_path}: {', '.join(unknown)}")

    config.update(data)
    return config


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Send logs to stderr and, if given, to `log_file`."""
    level = getattr(logging, str(log_level).upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    handlers = []
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if log_file:
        make_directory(log_file)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
