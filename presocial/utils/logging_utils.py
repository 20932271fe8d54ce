import logging
import logging.config
from pathlib import Path
from typing import Optional, Union

import yaml

from ..config.settings import settings

DEFAULT_LOGGING_CONFIG_PATH = Path(settings.LOGGING_CONFIG_PATH)

# Per-request INFO lines from the HTTP clients drown out the service's own logs.
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(config_path: Union[str, Path] = DEFAULT_LOGGING_CONFIG_PATH, debug: Optional[bool] = None) -> bool:
    """
    Configure logging for the service from a YAML ``dictConfig`` file.

    Falls back to ``basicConfig`` when the file is missing or invalid.

    Args:
        config_path: Path to the logging configuration YAML file.
        debug: Lower the ``presocial`` logger to DEBUG. Defaults to ``settings.DEBUG``.

    Returns:
        bool: True if the YAML configuration was applied.
    """
    if debug is None:
        debug = settings.DEBUG
    config_path = Path(config_path)
    applied = False

    if config_path.exists():
        try:
            with open(config_path, 'rt') as f:
                log_config = yaml.safe_load(f.read())
            logging.config.dictConfig(log_config)
            applied = True
        except Exception as e:
            logging.basicConfig(level=logging.INFO)
            logging.error(f"Error loading logging configuration from {config_path}: {e}. Using basicConfig.")
    else:
        logging.basicConfig(level=logging.INFO)
        logging.warning(f"Logging configuration file not found at {config_path}. Using basicConfig.")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if debug:
        logging.getLogger("presocial").setLevel(logging.DEBUG)

    if applied:
        logging.getLogger(__name__).info(f"Logging configured from {config_path}")
    return applied
