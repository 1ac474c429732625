import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger


def setup_logging(root: Optional[str] = None, level: str = "INFO", to_file: bool = True):
    logger.remove()
    # stdout siempre
    logger.add(sys.stdout, level=level, backtrace=True, diagnose=False)
    if to_file and root:
        logdir = Path(root) / datetime.now().strftime("%Y/%m/%d")
        logdir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(logdir / "app.log"),
            rotation="00:00",
            retention="14 days",
            level=level,
            enqueue=True,
            backtrace=True,
            diagnose=True,
        )
    return logger
