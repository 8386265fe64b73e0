"""
Logging Configuration
Sets up the 'gltfinstancer' logger for the headless runner and for hosts
embedding the Scene.
"""
import logging
import sys
from typing import Optional

PACKAGE_LOGGER: str = "gltfinstancer"

# Libraries that log chatty DEBUG output while parsing or plotting.
NOISY_LOGGERS: tuple[str, ...] = ("matplotlib", "PIL", "pygltflib")

LOG_FORMAT: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEBUG_LOG_FORMAT: str = '%(asctime)s.%(msecs)03d - %(name)s:%(lineno)d - %(levelname)s - %(message)s'


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configures the package logger.

    At DEBUG the format carries milliseconds and line numbers, since tick
    logs are only useful with sub-second timestamps.

    Args:
        level: Logging level (e.g. logging.DEBUG, logging.INFO)
        log_file: Optional path to save logs to a file (overwritten).

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    # Scenes may be rebuilt in one process; never stack handlers
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    formatter = logging.Formatter(
        DEBUG_LOG_FORMAT if level <= logging.DEBUG else LOG_FORMAT,
        datefmt='%H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logger.debug(f"Logging initialized at {logging.getLevelName(level)}")
    return logger
