"""
日志配置模块

控制台 + 文件双输出；错误级别额外写入独立文件。
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = "logs",
    log_file: Optional[str] = None,
    log_format: str = LOG_FORMAT,
) -> Optional[Path]:
    """
    配置日志系统

    Args:
        log_level: 日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: 日志目录；为 None 时只输出到控制台
        log_file: 日志文件名（默认使用时间戳）
        log_format: 日志格式

    Returns:
        日志文件路径（未写文件时为 None）
    """
    level = getattr(logging, str(log_level).upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(log_format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_dir is None:
        return None

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    if log_file is None:
        log_file = f"crawler_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    log_file_path = log_path / log_file

    file_handler = logging.FileHandler(log_file_path, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    error_file_handler = logging.FileHandler(log_path / f"error_{log_file}", mode="a", encoding="utf-8")
    error_file_handler.setLevel(logging.ERROR)
    error_file_handler.setFormatter(formatter)
    root_logger.addHandler(error_file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    root_logger.info("Logging initialized. Level: %s, file: %s", log_level, log_file_path.absolute())
    return log_file_path
