"""
Health checks following the Health Check Response Format draft for HTTP
APIs and Kubernetes probe conventions.

Dependencies are read from the process context on ``app.state``; nothing
here opens its own connection pool.
"""

import logging
import os
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

import psutil
import redis
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

Check = Dict[str, Any]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class HealthStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"


def _result(state: HealthStatus, component: str, **fields: Any) -> Check:
    return {"status": state, "componentType": component, **fields, "time": _now()}


def _grade(value: float, fail_below: float, warn_below: float) -> HealthStatus:
    if value < fail_below:
        return HealthStatus.FAIL
    if value < warn_below:
        return HealthStatus.WARN
    return HealthStatus.PASS


def _timed(component: str, probe: Callable[[], None], on_error: HealthStatus) -> Check:
    started = time.perf_counter()
    try:
        probe()
    except Exception as e:
        logger.warning(f"{component} health probe failed: {e}")
        return _result(on_error, component, output=str(e))
    elapsed = (time.perf_counter() - started) * 1000
    return _result(HealthStatus.PASS, component, observedValue=f"{elapsed:.2f}", observedUnit="ms")


class ServiceHealth:
    """Liveness, readiness and startup probes plus a small metrics document"""

    def __init__(self, service_name: str, version: str = "1.0.0", redis_url: Optional[str] = None):
        self.service_name = service_name
        self.version = version
        self.redis_url = redis_url
        self.start_time = time.time()
        self.checks_performed = 0

    def create_health_router(self) -> APIRouter:
        router = APIRouter(tags=["health"])

        @router.get("/health")
        async def health_check() -> Dict[str, Any]:
            """Process is up; dependencies are not consulted"""
            return {
                "status": HealthStatus.PASS,
                "service": self.service_name,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "timestamp": _now(),
            }

        @router.get("/health/live")
        async def liveness() -> Dict[str, Any]:
            return {"status": "alive"}

        @router.get("/health/ready")
        def readiness(request: Request) -> JSONResponse:
            checks = self.perform_readiness_checks(getattr(request.app.state, "context", None))
            overall = self.calculate_overall_status(checks)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE if overall == HealthStatus.FAIL else status.HTTP_200_OK,
                content={
                    "status": overall.value,
                    "serviceId": self.service_name,
                    "version": self.version,
                    "checks": checks,
                    "timestamp": _now(),
                },
            )

        @router.get("/health/startup")
        def startup(request: Request):
            checks = {"database:migrations": self._check_migrations(self._engine(request.app.state))}
            if self.calculate_overall_status(checks) == HealthStatus.FAIL:
                return JSONResponse(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    content={"status": "starting", "checks": checks},
                )
            return {"status": "started", "checks": checks}

        @router.get("/metrics")
        async def metrics() -> Dict[str, Any]:
            process = psutil.Process()
            return {
                "service": self.service_name,
                "version": self.version,
                "uptime_seconds": round(time.time() - self.start_time, 3),
                "checks_performed": self.checks_performed,
                "system": {
                    "memory_rss_bytes": process.memory_info().rss,
                    "cpu_percent": process.cpu_percent(),
                    "num_threads": process.num_threads(),
                },
                "timestamp": _now(),
            }

        return router

    @staticmethod
    def _engine(state) -> Optional[Engine]:
        context = getattr(state, "context", None)
        return context.engine if context is not None else None

    def perform_readiness_checks(self, context) -> Dict[str, Check]:
        self.checks_performed += 1
        engine = context.engine if context is not None else None
        checks = {"database:connectivity": self._check_database(engine)}
        if context is not None:
            # Placement needs the catalog; reads and status changes do not
            checks["catalog:connectivity"] = _timed("catalog", context.catalog.ping, HealthStatus.WARN)
        if self.redis_url:
            checks["cache:connectivity"] = _timed(
                "cache", lambda: redis.from_url(self.redis_url, socket_connect_timeout=1).ping(), HealthStatus.WARN
            )
        checks["storage:disk_space"] = self._check_disk_space()
        checks["system:memory"] = self._check_memory()
        return checks

    @staticmethod
    def _check_database(engine: Optional[Engine]) -> Check:
        if engine is None:
            return _result(HealthStatus.FAIL, "datastore", output="database not initialised")

        def probe():
            with engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()

        return _timed("datastore", probe, HealthStatus.FAIL)

    @staticmethod
    def _check_disk_space() -> Check:
        free_gb = psutil.disk_usage('/').free / (1024 ** 3)
        return _result(_grade(free_gb, 1, 5), "system", observedValue=f"{free_gb:.2f}", observedUnit="GB")

    @staticmethod
    def _check_memory() -> Check:
        available_mb = psutil.virtual_memory().available / (1024 ** 2)
        return _result(_grade(available_mb, 100, 500), "system",
                       observedValue=f"{available_mb:.2f}", observedUnit="MB")

    @staticmethod
    def _check_migrations(engine: Optional[Engine]) -> Check:
        if engine is None:
            return _result(HealthStatus.FAIL, "datastore", output="database not initialised")
        try:
            tables = set(inspect(engine).get_table_names())
        except Exception as e:
            return _result(HealthStatus.FAIL, "datastore", output=str(e))
        if "alembic_version" in tables:
            return _result(HealthStatus.PASS, "datastore")
        if "orders" in tables:
            # Created by create_all (tests, first boot without alembic)
            return _result(HealthStatus.WARN, "datastore", output="Migrations table not found")
        return _result(HealthStatus.FAIL, "datastore", output="Schema not created")

    @staticmethod
    def calculate_overall_status(checks: Dict[str, Check]) -> HealthStatus:
        statuses = {check.get("status", HealthStatus.PASS) for check in checks.values()}
        for state in (HealthStatus.FAIL, HealthStatus.WARN):
            if state in statuses:
                return state
        return HealthStatus.PASS
