"""
Logging setup shared by the CLI and worker processes.
"""
import logging

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(processName)s - %(message)s'


def configure_logging(level: int = logging.INFO) -> None:
    """
    Send log records to stderr at `level`.

    When the root logger already has handlers (an embedding application,
    a forked parent) only the level is adjusted.
    """
    if logging.root.handlers:
        logging.root.setLevel(level)
        return
    logging.basicConfig(level=level, format=LOG_FORMAT)
