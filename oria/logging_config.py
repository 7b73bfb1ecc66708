"""Application logging setup."""

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional


class UTCFormatter(logging.Formatter):
    """Formatter that stamps records in UTC, matching persisted timestamps."""

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.strftime("%Y-%m-%d %H:%M:%S UTC")

    def format(self, record):
        result = super().format(record)
        # 多行消息,增加缩进
        if "\n" in record.getMessage():
            lines = result.split("\n")
            result = "\n".join([lines[0]] + ["    " + line for line in lines[1:]])
        return result


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    """配置应用程序日志"""
    formatter = UTCFormatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S UTC",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_dir:
        # 按天轮转, 保留30天
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            filename=path / "oria.log",
            when="midnight",
            interval=1,
            backupCount=30,
            encoding="utf-8",
            utc=True,
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # aiohttp access noise
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
