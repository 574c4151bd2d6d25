from logging import DEBUG, INFO, config, root

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {
        "console": {
            "formatter": "default_formatter",
            "class": "logging.StreamHandler",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO",
    },
    "loggers": {
        "urllib3": {"level": "WARNING"},
    },
    "formatters": {
        "default_formatter": {
            "format": "%(levelname)s | %(message)s | %(name)s",
        },
    },
}


def configure_logging(verbose: bool = False) -> None:
    config.dictConfig(LOGGING)
    root.setLevel(DEBUG if verbose else INFO)
