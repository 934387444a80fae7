"""
Logging setup for the match engine.

Every engine module calls setup_logger(__name__) once at import time.
Debug chatter goes to a per-process log file; warnings and above also
reach the terminal.
"""

import logging
import os
from datetime import datetime

import config

LOG_FILE_NAME = f"match_engine_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"


def setup_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.DEBUG))

    # Prevent duplicate handlers if called multiple times
    if not logger.handlers:
        os.makedirs(config.LOG_DIR, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(config.LOG_DIR, LOG_FILE_NAME), encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        logger.addHandler(file_handler)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(logging.Formatter('%(name)s - %(levelname)s - %(message)s'))
        logger.addHandler(console_handler)

    return logger
