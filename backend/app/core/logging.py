import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once per process."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # httpx logs every request URL at INFO, which includes Gmail query strings
    logging.getLogger("httpx").setLevel(logging.WARNING)
