"""
Logging setup shared by the command line and the web service.
"""
import logging
import sys


def setup_logging(level=logging.INFO, log_file=None):
    """
    Configure console (and optional file) logging for the sculpture modules.

    Args:
        level: logging level, e.g. logging.DEBUG
        log_file: optional path that receives the same records
    """
    root = logging.getLogger()
    root.setLevel(level)

    # avoid duplicate handlers when called twice (tests, reloads)
    if root.hasHandlers():
        root.handlers.clear()

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.debug("Logging initialized.")
