#!/usr/bin/env python3
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
CalendarHub - Unified calendar and task aggregation

Main entry point for the command-line application.
"""

import argparse
import asyncio
import sys
import traceback
from typing import Dict, List, Optional

from config.__version__ import get_display_version
from config.app_config import ConfigManager
from utils.logger import setup_logging

# Global logger for exception hook
_logger = None


def exception_hook(exctype, value, tb):
    """
    Global exception handler for uncaught exceptions.

    Args:
        exctype: Exception type
        value: Exception value
        tb: Traceback object
    """
    if issubclass(exctype, KeyboardInterrupt):
        sys.__excepthook__(exctype, value, tb)
        return

    error_msg = "".join(traceback.format_exception(exctype, value, tb))
    if _logger:
        _logger.critical(
            f"Uncaught exception: {exctype.__name__}: {value}",
            exc_info=(exctype, value, tb),
        )
    else:
        # Fallback if logger not initialized
        print(f"CRITICAL ERROR: {error_msg}", file=sys.stderr)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="calendarhub",
        description="Aggregate Google, Outlook and iCloud calendars into one view.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="run a single sync cycle and exit instead of syncing periodically",
    )
    parser.add_argument(
        "--search",
        metavar="KEYWORD",
        help="print events and tasks matching KEYWORD after syncing",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="override the configured log level",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {get_display_version()}",
    )
    return parser.parse_args(argv)


async def prompt_for_authorization_code(authorization_url: str) -> Optional[str]:
    """Ask the user to authorize in a browser and paste the returned code."""
    print("Open this URL in a browser and authorize CalendarHub:")
    print(f"  {authorization_url}")
    code = await asyncio.to_thread(input, "Authorization code (empty to skip): ")
    return code.strip() or None


def build_adapters(config: ConfigManager, logger) -> Dict[str, object]:
    """Create adapters for every enabled provider with usable credentials."""
    from engines.calendar_sync import (
        AppleCalendarAdapter,
        GoogleCalendarAdapter,
        OutlookCalendarAdapter,
    )

    http_config = dict(config.get("http", {}))
    providers = config.get("providers", {})
    adapters = {}

    oauth_classes = {
        "google": GoogleCalendarAdapter,
        "outlook": OutlookCalendarAdapter,
    }
    for name, adapter_cls in oauth_classes.items():
        provider_config = providers.get(name, {})
        if not provider_config.get("enabled"):
            continue
        client_id = provider_config.get("client_id", "")
        client_secret = provider_config.get("client_secret", "")
        if not (client_id and client_secret):
            logger.warning("%s OAuth credentials not configured", name)
            continue
        adapters[name] = adapter_cls(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=provider_config.get("redirect_uri") or "http://localhost:8080/callback",
            authorization_code_provider=prompt_for_authorization_code,
            refresh_token=provider_config.get("refresh_token") or None,
            http_client_config=http_config,
        )
        logger.info("%s adapter initialized", name)

    apple_config = providers.get("apple", {})
    if apple_config.get("enabled"):
        if apple_config.get("user_id") and apple_config.get("app_password"):
            adapters["apple"] = AppleCalendarAdapter(
                user_id=apple_config["user_id"],
                app_password=apple_config["app_password"],
                base_url=apple_config.get("base_url") or AppleCalendarAdapter.CALDAV_BASE_URL,
                http_client_config=http_config,
            )
            logger.info("apple adapter initialized")
        else:
            logger.warning("apple credentials not configured")

    return adapters


def print_search_results(search_engine, keyword: str) -> None:
    events, tasks = search_engine.search_all(keyword)
    print(f"Events matching {keyword!r}: {len(events)}")
    for event in events:
        when = event.start_time.date().isoformat() if event.is_all_day else event.start_time.isoformat()
        print(f"  [{event.provider.value}] {when}  {event.title}")
    print(f"Tasks matching {keyword!r}: {len(tasks)}")
    for task in tasks:
        mark = "x" if task.is_completed else " "
        due = task.due_date.date().isoformat() if task.due_date else "-"
        print(f"  [{mark}] [{task.provider.value}] P{task.priority} {due}  {task.title}")


def persist_credentials(config: ConfigManager, adapters: Dict[str, object], logger) -> None:
    """Store refreshed OAuth tokens so the next run can skip authorization."""
    changed = False
    for name, adapter in adapters.items():
        get_credentials = getattr(adapter, "get_credentials", None)
        if get_credentials is None:
            continue
        refresh_token = get_credentials().get("refresh_token")
        if refresh_token and refresh_token != config.get(f"providers.{name}.refresh_token"):
            config.set(f"providers.{name}.refresh_token", refresh_token)
            changed = True

    if changed:
        try:
            config.save()
        except Exception as e:
            logger.error(f"Could not persist provider credentials: {e}")


async def run(args: argparse.Namespace, config: ConfigManager, logger) -> int:
    from core.calendar import CalendarManager, SearchEngine, SyncManager
    from data.storage.calendar_repository import InMemoryCalendarRepository

    calendar_config = config.get("calendar", {})
    retry_config = calendar_config.get("retry", {})

    calendar_manager = CalendarManager(InMemoryCalendarRepository())
    calendar_manager.initialize()
    sync_manager = SyncManager(
        calendar_manager,
        fetch_window_months=calendar_config.get("fetch_window_months", 1),
        auto_sync_interval_minutes=calendar_config.get("sync_interval_minutes", 15),
        retry_max_attempts=retry_config.get("max_attempts", 3),
        retry_base_delay_minutes=retry_config.get("base_delay_minutes", 1),
    )
    sync_manager.initialize()
    search_engine = SearchEngine(calendar_manager)

    sync_manager.sync_error.connect(
        lambda provider, reason: logger.warning("Sync error from %s: %s", provider.value, reason)
    )

    adapters = build_adapters(config, logger)
    if not adapters:
        logger.warning("No calendar providers enabled; edit %s", config.user_config_path)

    try:
        for adapter in adapters.values():
            await adapter.authenticate()
            sync_manager.register_adapter(adapter)

        persist_credentials(config, adapters, logger)

        sync_manager.sync_all()
        await sync_manager.wait_for_completion()
        logger.info(
            "Initial sync finished: %s events, %s tasks",
            len(calendar_manager.get_all_events()),
            len(calendar_manager.get_all_tasks()),
        )

        if args.search is not None:
            print_search_results(search_engine, args.search)

        if not args.once:
            sync_manager.set_auto_sync_enabled(True)
            logger.info(
                "Auto sync every %s minute(s); press Ctrl+C to stop",
                sync_manager.scheduler.interval_minutes,
            )
            # Runs until cancelled by KeyboardInterrupt
            await asyncio.Event().wait()

    finally:
        logger.info("Performing cleanup...")
        sync_manager.cleanup()
        persist_credentials(config, adapters, logger)
        for adapter in adapters.values():
            await adapter.close()
        logger.info("Cleanup complete")

    return 1 if sync_manager.last_cycle_errors else 0


def main(argv: Optional[List[str]] = None) -> int:
    """Application entry point."""
    global _logger

    args = parse_args(argv)

    try:
        config = ConfigManager()
        logging_config = config.get("logging", {})
        logger = setup_logging(
            level=args.log_level or logging_config.get("level"),
            console_output=logging_config.get("console_output", True),
        )
        _logger = logger
        sys.excepthook = exception_hook

        logger.info("=" * 60)
        logger.info(f"Starting CalendarHub {get_display_version()}")
        logger.info("=" * 60)

        return asyncio.run(run(args, config, logger))

    except KeyboardInterrupt:
        if _logger:
            _logger.info("Interrupted; exiting")
        return 130
    except Exception as e:
        print(f"Fatal error during application startup: {e}")
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
