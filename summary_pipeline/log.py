"""
summary_pipeline.log — Logging setup for command-line runs.
"""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

NOISY_LIBS = ("httpx", "httpcore", "snowflake.connector", "urllib3")


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    for name in NOISY_LIBS:
        logging.getLogger(name).setLevel(logging.WARNING)
