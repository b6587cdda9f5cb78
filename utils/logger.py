# SPDX-License-Identifier: Apache-2.0
#
# Copyright (c) 2024-2025 CalendarHub Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
日志系统配置

提供集中式日志设置，支持文件轮转和控制台输出。
"""

import logging
import os
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from config.app_config import get_app_dir
from config.constants import (
    DEFAULT_LOG_LINES_TO_READ,
    LOG_FILE_BACKUP_COUNT,
    LOG_FILE_MAX_BYTES,
)

ROOT_LOGGER_NAME = "calendarhub"

# 日志级别映射
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class SensitiveDataFilter(logging.Filter):
    """
    过滤敏感数据的日志过滤器

    防止 OAuth Token、App 密码等敏感信息被记录到日志中。
    """

    # 敏感关键词列表
    SENSITIVE_KEYWORDS = [
        "token",
        "access_token",
        "refresh_token",
        "password",
        "app_password",
        "secret",
        "client_secret",
        "authorization",
        "bearer",
        "code_verifier",
    ]

    _PATTERNS = [
        (re.compile(r"((?:access|refresh)?_?token\s*[=:]\s*)[^\s,&\)]+", re.IGNORECASE), r"\1***"),
        (re.compile(r"(password\s*[=:]\s*)[^\s,&\)]+", re.IGNORECASE), r"\1***"),
        (re.compile(r"(secret\s*[=:]\s*)[^\s,&\)]+", re.IGNORECASE), r"\1***"),
        (re.compile(r"(code_verifier\s*[=:]\s*)[^\s,&\)]+", re.IGNORECASE), r"\1***"),
        (re.compile(r"(bearer\s+)[^\s,\)]+", re.IGNORECASE), r"\1***"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """
        过滤日志记录

        Args:
            record: 日志记录对象

        Returns:
            是否允许记录该日志
        """
        message = record.getMessage()
        lowered = message.lower()

        for keyword in self.SENSITIVE_KEYWORDS:
            if keyword in lowered:
                # 参数已合并进消息，清空 args 避免二次格式化
                record.msg = self._mask_sensitive_data(message)
                record.args = None
                break

        return True

    def _mask_sensitive_data(self, message: str) -> str:
        """
        遮蔽敏感数据

        Args:
            message: 原始消息

        Returns:
            遮蔽后的消息
        """
        masked = message
        for pattern, replacement in self._PATTERNS:
            masked = pattern.sub(replacement, masked)
        return masked


def setup_logging(
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
    console_output: bool = True,
) -> logging.Logger:
    """
    设置应用日志系统

    配置文件轮转处理器和控制台处理器。

    Args:
        log_dir: 日志文件目录，默认为 ~/.calendarhub/logs
        level: 日志级别，默认根据环境变量 CALENDARHUB_ENV 决定
               (development: DEBUG, production: INFO)
        console_output: 是否输出到控制台，默认 True

    Returns:
        配置好的应用根日志器
    """
    if log_dir is None:
        log_path = get_app_dir() / "logs"
    else:
        log_path = Path(log_dir)

    log_path.mkdir(parents=True, exist_ok=True)

    if level is None:
        env = os.environ.get("CALENDARHUB_ENV", "production").lower()
        level = "DEBUG" if env == "development" else "INFO"

    log_level = LOG_LEVELS.get(level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # 设置为最低级别，由处理器控制

    # 清除现有处理器，避免重复
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    sensitive_filter = SensitiveDataFilter()

    # 文件处理器 - 详细日志，带轮转
    log_file = log_path / "calendarhub.log"
    file_handler = RotatingFileHandler(
        log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUP_COUNT, encoding="utf-8"
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )
    file_handler.setFormatter(file_formatter)
    file_handler.addFilter(sensitive_filter)
    logger.addHandler(file_handler)

    # 控制台处理器 - 简化日志
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(max(log_level, logging.INFO))
        console_formatter = logging.Formatter("%(levelname)s: %(message)s")
        console_handler.setFormatter(console_formatter)
        console_handler.addFilter(sensitive_filter)
        logger.addHandler(console_handler)

    logger.info("Logging initialized")
    logger.debug("Log file: %s", log_file)
    logger.debug("Log level: %s", level)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    获取特定模块的日志器实例

    Args:
        name: 模块名称（通常使用 __name__）

    Returns:
        日志器实例

    Example:
        logger = get_logger(__name__)
        logger.info("This is an info message")
    """
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)

    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def set_log_level(level: str):
    """
    动态设置日志级别

    Args:
        level: 日志级别 (DEBUG/INFO/WARNING/ERROR/CRITICAL)
    """
    log_level = LOG_LEVELS.get(level.upper(), logging.INFO)
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler):
            handler.setLevel(log_level)

    logger.info("Log level changed to: %s", level)


def get_log_file_path() -> Path:
    """
    获取当前日志文件路径

    Returns:
        日志文件路径
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler):
            return Path(handler.baseFilename)

    return get_app_dir() / "logs" / "calendarhub.log"


def get_recent_logs(lines: Optional[int] = None) -> list:
    """
    获取最近的日志行

    Args:
        lines: 要读取的行数，默认使用 DEFAULT_LOG_LINES_TO_READ

    Returns:
        日志行列表
    """
    if lines is None:
        lines = DEFAULT_LOG_LINES_TO_READ
    log_file = get_log_file_path()

    if not log_file.exists():
        return []

    try:
        with open(log_file, "r", encoding="utf-8") as f:
            all_lines = f.readlines()
            return all_lines[-lines:]
    except OSError as e:
        return [f"Error reading log file: {e}"]
