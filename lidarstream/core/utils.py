from __future__ import annotations
import logging
import time

def get_logger(name: str = "lidarstream") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        fmt = logging.Formatter("[%(levelname)s] %(message)s")
        handler.setFormatter(fmt)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger

def get_timestamp_usec() -> int:
    """Current unix time in microseconds (UTC), the timestamp unit used by sensors."""
    return time.time_ns() // 1_000

def sec_to_usec(sec: float) -> int:
    return int(round(sec * 1_000_000.0))
