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
Application-wide constants for CalendarHub.

This module contains constants used across multiple modules to avoid
hardcoded values throughout the codebase.
"""

# ============================================================================
# Synchronization Constants
# ============================================================================

DEFAULT_SYNC_INTERVAL_MINUTES = 15
DEFAULT_FETCH_WINDOW_MONTHS = 1
MAX_FETCH_WINDOW_MONTHS = 12
DEFAULT_OAUTH_REDIRECT_PORT = 8080

# Retry backoff for failed provider syncs: 1min, 2min, 4min
SYNC_RETRY_MAX_ATTEMPTS = 3
SYNC_RETRY_BASE_DELAY_MINUTES = 1

# Progress milestones reported per provider during a sync cycle
SYNC_PROGRESS_DISPATCHED = 0
SYNC_PROGRESS_EVENTS_RECEIVED = 50
SYNC_PROGRESS_TASKS_RECEIVED = 100

# ============================================================================
# Entity Defaults
# ============================================================================

DEFAULT_TASK_PRIORITY = 3
MIN_TASK_PRIORITY = 1
MAX_TASK_PRIORITY = 5
DEFAULT_EVENT_COLOR = "#4285F4"

# ============================================================================
# HTTP Client Defaults
# ============================================================================

HTTP_DEFAULT_TIMEOUT_SECONDS = 30.0
HTTP_DEFAULT_MAX_RETRIES = 3
HTTP_DEFAULT_BASE_DELAY_SECONDS = 1.0
HTTP_MAX_RETRY_AFTER_SECONDS = 60.0
PROVIDER_PAGE_SIZE = 250

# ============================================================================
# Logging Constants
# ============================================================================

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_FILE_BACKUP_COUNT = 5
DEFAULT_LOG_LINES_TO_READ = 200
