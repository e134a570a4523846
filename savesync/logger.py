import logging
import os

logger = logging.getLogger("savesync")

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def configure_logging(log_dir=None, level=logging.INFO):
    """Attach stream (and optionally file) handlers to the savesync logger."""
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
               for h in logger.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        logger.addHandler(stream)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(log_dir, "savesync.log"))
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    return logger
