"""Logging setup shared by the CLI and library callers."""
import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = "INFO"):
    levelno = getattr(logging, level.upper(), logging.INFO)
    # force: the CLI may be invoked several times in one process (tests)
    logging.basicConfig(level=levelno, format=LOG_FORMAT, force=True)
    logging.getLogger("graphlet").setLevel(levelno)
