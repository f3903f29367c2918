"""
============================================================================
PULSE ENGINE - MAIN APPLICATION
============================================================================
Entry point that wires the check pipeline together.

Commands
--------
    python main.py schedule     one scheduling pass, stats printed as JSON
    python main.py worker       run the worker pool until signalled
    python main.py serve        worker pool + periodic trigger + control server

Startup Order
-------------
1.  Load settings & configure logging
2.  Initialize DatabaseManager (create tables if configured)
3.  Build the check queue backend
4.  Wire Scheduler, CheckExecutor, AlertRuleEngine, NotificationDispatcher
5.  Wire WorkerPool (worker / serve)
6.  Start ControlServer and IntervalTrigger (serve)

Shutdown Order (reverse)
-------------------------
On SIGINT or SIGTERM:
    stop trigger → stop control server → drain worker pool →
    close HTTP clients → close queue → close DB → exit

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Optional

import httpx

# ---------------------------------------------------------------------------
# Path setup: keep the project root importable regardless of CWD
# ---------------------------------------------------------------------------
sys.path.insert(0, str(Path(__file__).parent))

from config.settings import Settings, get_settings
from database.gateway import DataStoreGateway
from database.manager import DatabaseManager
from exceptions.base import PulseException
from messaging import CheckQueue, build_queue
from monitoring.alerts import AlertRuleEngine
from monitoring.channels import build_senders
from monitoring.control import ControlServer
from monitoring.dispatcher import NotificationDispatcher
from monitoring.executor import CheckExecutor
from monitoring.scheduler import MonitorScheduler
from monitoring.trigger import IntervalTrigger
from monitoring.worker import WorkerPool
from utils.logger import get_logger, setup_logging


logger = get_logger("Main")


# ============================================================================
# APPLICATION CLASS
# ============================================================================

class PulseApplication:
    """
    Top-level application orchestrator.

    Owns every subsystem and is the single place that knows the startup /
    shutdown order. No module-level singletons other than the cached
    Settings.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

        # --- subsystems (populated during startup) ---
        self.db_manager: Optional[DatabaseManager] = None
        self.gateway: Optional[DataStoreGateway] = None
        self.queue: Optional[CheckQueue] = None
        self.scheduler: Optional[MonitorScheduler] = None
        self.executor: Optional[CheckExecutor] = None
        self.notify_client: Optional[httpx.AsyncClient] = None
        self.worker_pool: Optional[WorkerPool] = None
        self.trigger: Optional[IntervalTrigger] = None
        self.control_server: Optional[ControlServer] = None

        self._shutdown_event = asyncio.Event()

    # ==================================================================
    # PHASE 1: DATABASE & QUEUE
    # ==================================================================

    async def _init_core(self) -> None:
        logger.info("── Phase 1: Database & Queue ─────────────────────")

        self.db_manager = DatabaseManager(self.settings.database)
        await self.db_manager.initialize()
        self.gateway = DataStoreGateway(self.db_manager)

        self.queue = build_queue(self.settings.queue)
        if not await self.queue.ping():
            logger.warning(f"  ⚠ Queue backend '{self.queue.backend_name}' is not reachable yet")

        self.scheduler = MonitorScheduler(
            self.gateway,
            self.queue,
            self.settings.scheduler,
            self.settings.queue,
        )
        logger.info(f"  ✓ Database ready, queue backend: {self.queue.backend_name}")

    # ==================================================================
    # PHASE 2: WORKER PIPELINE
    # ==================================================================

    def _init_worker(self) -> None:
        logger.info("── Phase 2: Worker Pipeline ──────────────────────")

        self.executor = CheckExecutor(
            user_agent=self.settings.scheduler.user_agent,
            max_connections=self.settings.worker.pool_size * 2,
        )
        self.notify_client = httpx.AsyncClient(timeout=self.settings.notifications.webhook_timeout)
        dispatcher = NotificationDispatcher(
            self.gateway,
            build_senders(self.notify_client, self.settings.notifications),
        )

        self.worker_pool = WorkerPool(
            queue=self.queue,
            gateway=self.gateway,
            executor=self.executor,
            engine=AlertRuleEngine(self.gateway),
            dispatcher=dispatcher,
            worker_settings=self.settings.worker,
            queue_settings=self.settings.queue,
        )
        logger.info("  ✓ CheckExecutor, AlertRuleEngine, Dispatcher, WorkerPool created")

    # ==================================================================
    # COMMANDS
    # ==================================================================

    async def run_schedule_once(self) -> int:
        """``schedule``: one pass, stats on stdout. Exit code 1 on errors."""
        await self._init_core()
        stats = await self.scheduler.schedule_monitor_checks()
        print(json.dumps(stats.to_dict(), indent=2))
        return 1 if stats.errors else 0

    async def run_worker(self) -> int:
        """``worker``: consume until signalled."""
        await self._init_core()
        self._init_worker()
        await self.worker_pool.start()
        await self._shutdown_event.wait()
        return 0

    async def run_serve(self) -> int:
        """``serve``: worker pool, periodic trigger and control server."""
        await self._init_core()
        self._init_worker()

        logger.info("── Phase 3: Trigger & Control ────────────────────")
        self.trigger = IntervalTrigger(self.scheduler, self.settings.scheduler.trigger_interval)
        if self.settings.control.enabled:
            self.control_server = ControlServer(
                self.scheduler,
                self.worker_pool,
                self.settings.control,
            )
            await self.control_server.start()

        await self.worker_pool.start()
        await self.trigger.start()

        logger.info("=" * 74)
        logger.info(f"  ✓ {self.settings.app_name} v{self.settings.app_version} operational")
        logger.info("=" * 74)

        await self._shutdown_event.wait()
        return 0

    def request_shutdown(self) -> None:
        logger.info("  ⚡ Shutdown requested")
        self._shutdown_event.set()

    # ==================================================================
    # SHUTDOWN SEQUENCE
    # ==================================================================

    async def shutdown(self) -> None:
        """
        Graceful shutdown in reverse order.
        A failure in one subsystem does not prevent the others from
        cleaning up.
        """
        logger.info("  SHUTTING DOWN …")

        steps = (
            ("IntervalTrigger", self.trigger.stop if self.trigger else None),
            ("ControlServer", self.control_server.stop if self.control_server else None),
            ("WorkerPool", self.worker_pool.stop if self.worker_pool else None),
            ("CheckExecutor", self.executor.close if self.executor else None),
            ("Notification client", self.notify_client.aclose if self.notify_client else None),
            ("Queue", self.queue.close if self.queue else None),
            ("Database", self.db_manager.close if self.db_manager else None),
        )

        for name, step in steps:
            if step is None:
                continue
            try:
                await step()
            except (PulseException, OSError, httpx.HTTPError) as e:
                logger.error(f"  ✗ {name} stop error: {e}")

        logger.info("  ✓ SHUTDOWN COMPLETE")


# ============================================================================
# SIGNAL HANDLER SETUP
# ============================================================================

def _install_signal_handlers(app: PulseApplication) -> None:
    """
    Install SIGTERM / SIGINT handlers so the engine drains gracefully
    when the process manager restarts it.
    """
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, app.request_shutdown)
        except (NotImplementedError, OSError):
            # Not supported on Windows; KeyboardInterrupt still works
            pass


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pulse-engine",
        description="HTTP uptime check scheduler, worker pool and alert engine",
    )
    subcommands = parser.add_subparsers(dest="command", required=True)
    subcommands.add_parser("schedule", help="Run one scheduling pass and print its stats")
    subcommands.add_parser("worker", help="Run the worker pool until signalled")
    subcommands.add_parser("serve", help="Run worker pool, periodic trigger and control server")
    return parser


async def main(command: str) -> int:
    try:
        settings = get_settings()
    except PulseException as e:
        logger.error(f"  ✗ {e.log_format()}")
        return 1
    setup_logging(settings)

    app = PulseApplication(settings)
    _install_signal_handlers(app)

    runners = {
        "schedule": app.run_schedule_once,
        "worker": app.run_worker,
        "serve": app.run_serve,
    }

    try:
        return await runners[command]()
    except PulseException as e:
        logger.error(f"  ✗ {e.log_format()}")
        return 1
    finally:
        await app.shutdown()


def cli() -> None:
    args = build_parser().parse_args()
    try:
        sys.exit(asyncio.run(main(args.command)))
    except KeyboardInterrupt:
        sys.exit(130)


# ============================================================================
# SCRIPT ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    cli()
