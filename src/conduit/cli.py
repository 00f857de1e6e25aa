"""
CLI entry point.

Commands:
- init: Create the data directory and database schema
- dispatch <capability> <prompt>: Route one request and print the result
- enqueue <type> <json> [priority]: Add a task to the queue
- tick: Run one dispatcher tick
- worker: Run the dispatcher loop until interrupted
- usage [limit]: Show recent usage records and per-provider totals
- tasks [status]: List recent tasks as JSON lines
- stats: Show queue health
- health: Check provider connectivity

Flags:
- --debug: Enable debug logging
"""

import asyncio
import json
import logging
import signal
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from conduit.core.config import Settings, SettingsConfigProvider, get_settings
from conduit.core.logging import get_logger, setup_logging
from conduit.routing.router import CapabilityRouter, create_default_router
from conduit.storage.database import Database
from conduit.tasks.dispatcher import TaskDispatcher
from conduit.tasks.handlers import register_builtin_handlers
from conduit.tasks.registry import TaskHandlerRegistry
from conduit.tasks.store import TaskStore
from conduit.tasks.types import TaskStatus
from conduit.usage.ledger import UsageLedger

USAGE = """Usage: conduit [--debug] <command>
Commands:
  init                               Create data directory and database
  dispatch <capability> <prompt>     Route one request
  enqueue <type> <json> [priority]   Queue a task
  tick                               Run one dispatcher tick
  worker                             Run the dispatcher loop
  usage [limit]                      Recent usage records
  tasks [status]                     Recent tasks as JSON lines
  stats                              Queue health
  health                             Check provider connectivity
Flags: --debug (enable debug logging)"""


@dataclass
class Services:
    """Wired components for one CLI invocation."""

    config: SettingsConfigProvider
    db: Database
    ledger: UsageLedger
    router: CapabilityRouter
    store: TaskStore
    dispatcher: TaskDispatcher


@asynccontextmanager
async def open_services(settings: Settings) -> AsyncIterator[Services]:
    """Connect storage and build router, store and dispatcher."""
    config = SettingsConfigProvider(settings)
    db = Database(settings.db_path, timeout=settings.db_timeout)
    await db.connect()
    ledger = UsageLedger(db, settings.usage_max_records)
    router = create_default_router(config, ledger)
    store = TaskStore(db)
    handlers = TaskHandlerRegistry()
    register_builtin_handlers(handlers, router)
    dispatcher = TaskDispatcher.from_config(store, handlers, config)
    try:
        yield Services(config, db, ledger, router, store, dispatcher)
    finally:
        await router.close_all()
        await db.close()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = list(sys.argv[1:] if argv is None else argv)
    settings = get_settings()

    debug_mode = "--debug" in args
    if debug_mode:
        args.remove("--debug")

    log_level = logging.DEBUG if debug_mode else logging.INFO
    setup_logging(level=log_level, log_file=settings.data_dir / "conduit.log" if debug_mode else None)
    logger = get_logger("cli")

    if not args:
        print(USAGE)
        return 1

    command, rest = args[0], args[1:]

    if command == "init":
        return asyncio.run(_init(settings))

    if command == "dispatch":
        if len(rest) < 2:
            print("Usage: conduit dispatch <capability> <prompt>")
            return 1
        return asyncio.run(_dispatch(settings, rest[0], " ".join(rest[1:])))

    if command == "enqueue":
        if len(rest) < 2:
            print("Usage: conduit enqueue <type> <json> [priority]")
            return 1
        try:
            payload = json.loads(rest[1])
            priority = int(rest[2]) if len(rest) > 2 else 0
        except ValueError as e:
            print(f"Invalid arguments: {e}")
            return 1
        return asyncio.run(_enqueue(settings, rest[0], payload, priority))

    if command == "tick":
        return asyncio.run(_tick(settings))

    if command == "worker":
        logger.info("Starting dispatcher worker")
        return asyncio.run(_worker(settings))

    if command == "usage":
        limit = int(rest[0]) if rest and rest[0].isdigit() else 20
        return asyncio.run(_usage(settings, limit))

    if command == "tasks":
        status = rest[0] if rest else None
        if status is not None and status not in {s.value for s in TaskStatus}:
            print(f"Unknown status: {status}")
            return 1
        return asyncio.run(_tasks(settings, TaskStatus(status) if status else None))

    if command == "stats":
        return asyncio.run(_stats(settings))

    if command == "health":
        return asyncio.run(_health_check(settings))

    print(f"Unknown command: {command}")
    return 1


async def _init(settings: Settings) -> int:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    async with Database(settings.db_path, timeout=settings.db_timeout):
        pass
    print(f"Created: {settings.db_path}")
    return 0


async def _dispatch(settings: Settings, capability: str, prompt: str) -> int:
    from conduit.providers.base import Capability

    try:
        capability = Capability(capability)
    except ValueError:
        print(f"Unknown capability: {capability}")
        print(f"Capabilities: {', '.join(c.value for c in Capability)}")
        return 1

    async with open_services(settings) as services:
        result = await services.router.dispatch(capability, prompt)

    if not result.success:
        print(f"Error: {result.error}")
        if result.tried_providers:
            print(f"  tried: {', '.join(result.tried_providers)}")
        if result.skipped_providers:
            print(f"  skipped: {', '.join(result.skipped_providers)}")
        return 1

    content = result.content
    if isinstance(content, bytes):
        content = f"<{len(content)} bytes>"
    elif not isinstance(content, str):
        content = json.dumps(content)[:2000]
    print(content)
    print(f"  [{result.provider} {result.model} ${result.response.cost_usd:.4f}]")
    return 0


async def _enqueue(settings: Settings, task_type: str, payload: dict, priority: int) -> int:
    async with open_services(settings) as services:
        try:
            task_id = await services.store.enqueue(
                task_type, payload, priority=priority, max_attempts=settings.queue_max_attempts
            )
        except ValueError as e:
            print(f"Error: {e}")
            return 1
    print(task_id)
    return 0


async def _tick(settings: Settings) -> int:
    async with open_services(settings) as services:
        report = await services.dispatcher.tick()
    print(
        f"claimed={report.claimed} completed={len(report.completed)} "
        f"retrying={len(report.retrying)} failed={len(report.failed)}"
    )
    return 0


async def _worker(settings: Settings) -> int:
    """Run the dispatcher loop until SIGINT/SIGTERM."""
    logger = get_logger("cli.worker")
    shutdown = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    async with open_services(settings) as services:
        await services.dispatcher.start(settings.queue_interval)
        print(f"Worker {settings.worker_id} running. Press Ctrl+C to stop.")
        try:
            await shutdown.wait()
            logger.info("Shutdown signal received, stopping worker")
            print("\nShutting down gracefully...")
        finally:
            await services.dispatcher.stop()
    return 0


async def _usage(settings: Settings, limit: int) -> int:
    async with open_services(settings) as services:
        records = await services.ledger.query(limit=limit)
        summary = await services.ledger.summary()

    for record in records:
        status = "ok" if record.success else f"FAIL {record.error}"
        print(
            f"{record.timestamp:%Y-%m-%d %H:%M:%S} {record.provider:<10} "
            f"{record.capability:<20} {record.total_tokens:>7} tok "
            f"${record.cost_usd:.4f} {record.latency_ms}ms {status}"
        )
    if summary:
        print("-" * 40)
        for provider, totals in summary.items():
            print(
                f"{provider:<10} calls={totals.calls} failures={totals.failures} "
                f"cost=${totals.cost_usd:.4f} avg={totals.avg_latency_ms:.0f}ms"
            )
    return 0


async def _tasks(settings: Settings, status: TaskStatus | None) -> int:
    async with open_services(settings) as services:
        tasks = await services.store.list_tasks(status)

    for task in tasks:
        print(json.dumps(task.to_dict()))
    return 0


async def _stats(settings: Settings) -> int:
    async with open_services(settings) as services:
        stats = await services.store.stats(settings.queue_stuck_after)

    for status, count in stats.by_status.items():
        print(f"{status:<12} {count}")
    if stats.by_type:
        print("-" * 40)
        for task_type, count in stats.by_type.items():
            print(f"{task_type:<24} {count}")
    print(f"stuck        {stats.stuck}")
    return 1 if stats.stuck else 0


async def _health_check(settings: Settings) -> int:
    """Check provider health."""
    print("Checking providers...")
    async with open_services(settings) as services:
        results = await services.router.health_check_all()

    if not results:
        print("No providers configured.")
        return 1
    for provider, healthy in results.items():
        print(f"  {provider}: {'OK' if healthy else 'FAILED'}")
    return 0 if all(results.values()) else 1


if __name__ == "__main__":
    sys.exit(main())
