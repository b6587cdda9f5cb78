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
Base manager class for CalendarHub.

Provides common functionality and patterns for all manager classes.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class BaseManager(ABC):
    """
    Abstract base class for the calendar and sync managers.

    Provides common initialization patterns, logging setup, and
    standardized error handling for manager classes.
    """

    def __init__(self, name: Optional[str] = None, logger_name: Optional[str] = None):
        """
        Initialize the base manager.

        Args:
            name: Optional name for the manager (used in logging)
            logger_name: Full logger name; defaults to calendarhub.<name>
        """
        self._name = name or self.__class__.__name__
        self._logger = logging.getLogger(logger_name or f"calendarhub.{self._name.lower()}")
        self._initialized = False

    @property
    def name(self) -> str:
        """Get the manager name."""
        return self._name

    @property
    def logger(self) -> logging.Logger:
        """Get the manager's logger."""
        return self._logger

    @property
    def is_initialized(self) -> bool:
        """Check if the manager is initialized."""
        return self._initialized

    def _mark_initialized(self) -> None:
        """Mark the manager as initialized."""
        self._initialized = True
        self._logger.info("%s initialized successfully", self._name)

    @abstractmethod
    def initialize(self) -> bool:
        """
        Initialize the manager.

        Returns:
            True if initialization was successful, False otherwise
        """

    def cleanup(self) -> None:
        """
        Cleanup resources used by the manager.

        Default implementation does nothing. Override in subclasses as needed.
        """
        self._logger.debug("Cleaning up %s", self._name)

    def get_status(self) -> Dict[str, Any]:
        """
        Get the current status of the manager.

        Returns:
            Dictionary containing status information
        """
        return {
            "name": self._name,
            "initialized": self._initialized,
            "class": self.__class__.__name__,
        }

    def _handle_error(self, operation: str, error: Exception) -> None:
        """
        Handle errors in a standardized way.

        Args:
            operation: Description of the operation that failed
            error: The exception that occurred
        """
        self._logger.error("Error in %s: %s", operation, error, exc_info=True)
