import logging

_LOGGERS = {}

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def get_logger(name: str, level: str = "INFO") -> logging.Logger:
    """
    Create or retrieve a named logger under the survey_ledger namespace.

    Loggers are cached so repeated calls never stack handlers.
    """
    qualified = name if name.startswith("survey_ledger") else f"survey_ledger.{name}"
    if qualified in _LOGGERS:
        return _LOGGERS[qualified]

    logger = logging.getLogger(qualified)
    logger.setLevel(level.upper())

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(console)

    logger.propagate = False
    _LOGGERS[qualified] = logger

    return logger


def set_level(level: str) -> None:
    for logger in _LOGGERS.values():
        logger.setLevel(level.upper())
