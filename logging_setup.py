import json, logging.config, pathlib, copy
from functools import lru_cache

_BASE_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "rover": {"format": "%(asctime)s %(levelname)-8s %(name)s: %(message)s"}
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "rover",
            "level": "INFO",
        },
        "logfile": {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": "rover.log",
            "maxBytes": 1_000_000,
            "backupCount": 3,
            "formatter": "rover",
            "level": "DEBUG",
        },
    },
    "root": {"handlers": ["console", "logfile"], "level": "DEBUG"},
}


def _merge(base: dict, extra: dict) -> dict:
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def build_logging_config(cfg_path: str | None = None,
                         logfile: str | None = None,
                         console_level: str | None = None) -> dict:
    """
    Return the dictConfig mapping for the rover: console plus rotating log
    file. Keys in the JSON file at *cfg_path* are merged in depth, so a file
    that only sets ``handlers.console.level`` keeps everything else.
    """
    config = copy.deepcopy(_BASE_CONFIG)
    if cfg_path and pathlib.Path(cfg_path).exists():
        _merge(config, json.loads(pathlib.Path(cfg_path).read_text()))
    if logfile:
        config["handlers"]["logfile"]["filename"] = logfile
    if console_level:
        config["handlers"]["console"]["level"] = console_level.upper()
    return config


@lru_cache(maxsize=1)
def setup_logging(cfg_path: str | None = "log_config.json",
                  *,
                  logfile: str | None = None,
                  console_level: str | None = None):
    """Install the rover logging handlers; repeated calls are no-ops."""
    logging.config.dictConfig(build_logging_config(cfg_path, logfile, console_level))
