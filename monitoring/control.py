"""
============================================================================
PULSE ENGINE - CONTROL SERVER
============================================================================
aiohttp surface for external triggers and worker control.

Routes
------
GET  /health       scheduler and worker health, no auth
POST /scheduler    run one scheduling pass                 (Bearer auth)
POST /worker       {"action": "start" | "stop" | "status"} (Bearer auth)

The POST routes require ``Authorization: Bearer <CONTROL_SECRET>``.
Without a configured secret they reject every request.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import hmac
from typing import Optional

from aiohttp import web

from config.settings import ControlSettings
from exceptions.base import PulseException
from monitoring.scheduler import MonitorScheduler
from monitoring.worker import WorkerPool
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("Control")

WORKER_ACTIONS = ("start", "stop", "status")


class ControlServer:
    """
    Attributes
    ----------
    app : aiohttp.web.Application
    _runner : aiohttp.web.AppRunner
    _site : aiohttp.web.TCPSite
    """

    def __init__(
        self,
        scheduler: MonitorScheduler,
        worker_pool: Optional[WorkerPool],
        settings: ControlSettings
    ):
        self.scheduler = scheduler
        self.worker_pool = worker_pool
        self.settings = settings

        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._request_count = 0

        self.app = web.Application()
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_post("/scheduler", self._handle_scheduler)
        self.app.router.add_post("/worker", self._handle_worker)

        if settings.secret is None:
            logger.warning("CONTROL_SECRET is not set; POST control routes will reject all calls")

    async def start(self) -> None:
        """Bind and start serving."""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.settings.host, self.settings.port)
        await self._site.start()
        logger.info(f"✓ ControlServer listening on {self.settings.host}:{self.settings.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        logger.info("✓ ControlServer stopped")

    # ------------------------------------------------------------------
    # AUTH
    # ------------------------------------------------------------------

    def _authorized(self, request: web.Request) -> bool:
        if self.settings.secret is None:
            return False
        expected = f"Bearer {self.settings.secret.get_secret_value()}"
        provided = request.headers.get("Authorization", "")
        return hmac.compare_digest(provided.encode(), expected.encode())

    @staticmethod
    def _unauthorized() -> web.Response:
        return web.json_response({"error": "Unauthorized"}, status=401)

    # ------------------------------------------------------------------
    # ROUTE HANDLERS
    # ------------------------------------------------------------------

    async def _handle_health(self, request: web.Request) -> web.Response:
        """GET /health"""
        self._request_count += 1

        scheduler_health = await self.scheduler.health_check()
        worker_health = (
            await self.worker_pool.health_check() if self.worker_pool else None
        )

        healthy = scheduler_health["healthy"] and (
            worker_health is None or worker_health["healthy"]
        )
        body = {
            "service": "pulse-engine",
            "healthy": healthy,
            "scheduler": scheduler_health,
            "worker": worker_health,
            "requestsServed": self._request_count,
            "timestamp": TimeHelper.isoformat(TimeHelper.utcnow()),
        }
        return web.json_response(body, status=200 if healthy else 503)

    async def _handle_scheduler(self, request: web.Request) -> web.Response:
        """POST /scheduler"""
        self._request_count += 1
        if not self._authorized(request):
            return self._unauthorized()

        try:
            stats = await self.scheduler.schedule_monitor_checks()
        except PulseException as e:
            logger.error(f"[Control] Scheduling pass failed: {e.log_format()}")
            return web.json_response(
                {"success": False, "error": "Scheduling failed", "details": e.message},
                status=500,
            )

        return web.json_response({
            "success": True,
            "message": "Monitor scheduling completed",
            "stats": stats.to_dict(),
            "timestamp": TimeHelper.isoformat(TimeHelper.utcnow()),
        })

    async def _handle_worker(self, request: web.Request) -> web.Response:
        """POST /worker"""
        self._request_count += 1
        if not self._authorized(request):
            return self._unauthorized()

        try:
            body = await request.json()
        except ValueError:
            return web.json_response({"error": "Request body must be JSON"}, status=400)

        action = body.get("action") if isinstance(body, dict) else None
        if action not in WORKER_ACTIONS:
            return web.json_response(
                {"error": "Invalid action. Use: start, stop, or status"},
                status=400,
            )

        if self.worker_pool is None:
            return web.json_response(
                {"status": "stopped", "message": "No worker pool in this process"},
                status=409 if action == "start" else 200,
            )

        if action == "start":
            if self.worker_pool.is_running:
                message = "Worker already running"
            else:
                await self.worker_pool.start()
                message = "Worker started successfully"
        elif action == "stop":
            await self.worker_pool.stop()
            message = "Worker stopped successfully"
        else:
            message = None

        response = {
            "status": self.worker_pool.status(),
            "health": await self.worker_pool.health_check(),
            "timestamp": TimeHelper.isoformat(TimeHelper.utcnow()),
        }
        if message:
            response["message"] = message
        logger.info(f"[Control] Worker action '{action}' → {response['status']}")
        return web.json_response(response)
