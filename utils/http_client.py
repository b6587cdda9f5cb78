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
可重试的异步 HTTP 客户端

日历适配器的统一传输层：包装 httpx.AsyncClient，支持指数退避、
速率限制（429）处理以及 CalDAV 的自定义 HTTP 方法（PROPFIND/REPORT）。
"""

import asyncio
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterable, Optional, Set

import httpx

from config.constants import (
    HTTP_DEFAULT_BASE_DELAY_SECONDS,
    HTTP_DEFAULT_MAX_RETRIES,
    HTTP_DEFAULT_TIMEOUT_SECONDS,
    HTTP_MAX_RETRY_AFTER_SECONDS,
)

logger = logging.getLogger("calendarhub.utils.http_client")


class AsyncRetryableHttpClient:
    """
    异步可重试的 HTTP 客户端

    包装 httpx.AsyncClient，提供自动重试机制：
    - 指数退避重试策略
    - 速率限制处理（429 错误，遵循 Retry-After）
    - 网络错误与超时重试
    """

    # 可重试的 HTTP 状态码
    RETRYABLE_STATUS_CODES = {
        408,  # Request Timeout
        429,  # Too Many Requests
        500,  # Internal Server Error
        502,  # Bad Gateway
        503,  # Service Unavailable
        504,  # Gateway Timeout
    }

    def __init__(
        self,
        max_retries: int = HTTP_DEFAULT_MAX_RETRIES,
        timeout: float = HTTP_DEFAULT_TIMEOUT_SECONDS,
        base_delay: float = HTTP_DEFAULT_BASE_DELAY_SECONDS,
        max_retry_after: Optional[float] = HTTP_MAX_RETRY_AFTER_SECONDS,
        retryable_status_codes: Optional[Iterable[int]] = None,
        **client_kwargs
    ):
        """
        初始化异步可重试的 HTTP 客户端

        Args:
            max_retries: 最大重试次数（默认 3）
            timeout: 请求超时时间（秒，默认 30）
            base_delay: 基础延迟时间（秒，默认 1）
            max_retry_after: 429 响应允许的最大 Retry-After 秒数，None 表示不限制
            retryable_status_codes: 自定义可重试的 HTTP 状态码集合，默认为类属性
            **client_kwargs: 传递给 httpx.AsyncClient 的其他参数（如 transport、auth）
        """
        self.max_retries = max_retries
        self.timeout = timeout
        self.base_delay = base_delay
        self.max_retry_after = max_retry_after
        self.retryable_status_codes: Set[int] = (
            set(retryable_status_codes)
            if retryable_status_codes is not None
            else set(self.RETRYABLE_STATUS_CODES)
        )

        if 'timeout' not in client_kwargs:
            client_kwargs['timeout'] = timeout

        self.client = httpx.AsyncClient(**client_kwargs)

    async def __aenter__(self):
        """异步上下文管理器入口"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口"""
        await self.close()

    async def close(self):
        """关闭客户端"""
        await self.client.aclose()

    def _calculate_delay(self, attempt: int) -> float:
        """计算指数退避延迟时间：1s, 2s, 4s, ..."""
        return self.base_delay * (2 ** attempt)

    def _is_retryable_error(
        self,
        error: Exception,
        response: Optional[httpx.Response] = None
    ) -> bool:
        """判断错误是否可重试"""
        if isinstance(error, (
            httpx.ConnectError,
            httpx.TimeoutException,
            httpx.NetworkError
        )):
            return True

        if isinstance(error, httpx.HTTPStatusError):
            if response is not None and response.status_code in self.retryable_status_codes:
                return True

        return False

    def _get_retry_after(self, response: httpx.Response) -> Optional[float]:
        """
        从响应头获取 Retry-After 时间

        Returns:
            重试等待时间（秒），如果没有则返回 None
        """
        retry_after = response.headers.get('Retry-After')
        if not retry_after:
            return None

        try:
            # Retry-After 可能是秒数
            return float(retry_after)
        except ValueError:
            pass

        # 或者是 HTTP 日期格式
        try:
            retry_date = parsedate_to_datetime(retry_after)
        except (TypeError, ValueError) as e:
            logger.warning(
                "Failed to parse Retry-After header: %s, error: %s", retry_after, e
            )
            return None

        if retry_date.tzinfo is None:
            retry_date = retry_date.replace(tzinfo=timezone.utc)
        delta = (retry_date - datetime.now(timezone.utc)).total_seconds()
        return max(0.0, delta)

    def _status_retry_delay(self, response: httpx.Response, attempt: int) -> Optional[float]:
        """
        计算状态码错误的重试延迟

        Returns:
            延迟秒数；Retry-After 超过上限时返回 None 表示放弃重试
        """
        if response.status_code != 429:
            return self._calculate_delay(attempt)

        retry_after = self._get_retry_after(response)
        if retry_after is None:
            return self._calculate_delay(attempt)

        if self.max_retry_after is not None and retry_after > self.max_retry_after:
            logger.error(
                "Rate limit retry time too long (%ss > %ss), not retrying",
                retry_after,
                self.max_retry_after,
            )
            return None
        return retry_after

    async def request(
        self,
        method: str,
        url: str,
        **kwargs
    ) -> httpx.Response:
        """
        发送异步 HTTP 请求，带自动重试

        Args:
            method: HTTP 方法（GET, POST, PROPFIND, REPORT 等）
            url: 请求 URL
            **kwargs: 传递给 httpx.AsyncClient.request 的其他参数

        Returns:
            HTTP 响应对象

        Raises:
            httpx.HTTPError: 请求失败且重试次数用尽
        """
        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(method, url, **kwargs)
                response.raise_for_status()

                if attempt > 0:
                    logger.info(
                        "Request succeeded after %s retries: %s %s", attempt, method, url
                    )
                return response

            except httpx.HTTPStatusError as e:
                response = e.response

                if not self._is_retryable_error(e, response):
                    logger.error(
                        "Non-retryable HTTP error: %s %s %s",
                        response.status_code, method, url
                    )
                    raise

                if attempt >= self.max_retries:
                    logger.error("Max retries exceeded: %s %s", method, url)
                    raise

                delay = self._status_retry_delay(response, attempt)
                if delay is None:
                    raise

                logger.warning(
                    "HTTP error %s, retrying in %ss (attempt %s/%s)",
                    response.status_code, delay, attempt + 1, self.max_retries
                )
                await asyncio.sleep(delay)

            except (
                httpx.ConnectError,
                httpx.TimeoutException,
                httpx.NetworkError
            ) as e:
                if attempt >= self.max_retries:
                    logger.error(
                        "Max retries exceeded for network error: %s %s", method, url
                    )
                    raise

                delay = self._calculate_delay(attempt)
                logger.warning(
                    "Network error: %s, retrying in %ss (attempt %s/%s)",
                    type(e).__name__, delay, attempt + 1, self.max_retries
                )
                await asyncio.sleep(delay)

        raise RuntimeError("Unexpected error in retry loop")

    async def get(self, url: str, **kwargs) -> httpx.Response:
        """发送异步 GET 请求"""
        return await self.request('GET', url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        """发送异步 POST 请求"""
        return await self.request('POST', url, **kwargs)
