"""Health Check - Liveness and readiness for PhoneVault

Self-Explanatory: Real dependency checks behind the health endpoints.
How: SELECT 1 against the record store, DescribeKey against every registered key.

K8s Integration:
- /health/live: Liveness probe (is service running?)
- /health/ready: Readiness probe (can serve traffic?)
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Dict, Optional

import structlog
from fastapi import status
from fastapi.responses import JSONResponse

from phonevault.errors import DatabaseConnectionError
from phonevault.records.service import RecordService

logger = structlog.get_logger()


class HealthStatus:
    """Health status constants"""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthChecker:
    """Health checks for the record store and key service"""

    def __init__(self):
        self.start_time = time.time()

    async def check_database(self, service: RecordService) -> Dict:
        """Check record store connectivity"""
        start = time.time()
        try:
            await asyncio.get_running_loop().run_in_executor(None, service.store.ping)
        except DatabaseConnectionError as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "status": HealthStatus.UNHEALTHY,
                "error": str(e),
                "message": "Database connection failed"
            }
        return {
            "status": HealthStatus.HEALTHY,
            "latency_ms": round((time.time() - start) * 1000, 2),
            "message": "Database connection successful"
        }

    async def check_kms(self, service: RecordService) -> Dict:
        """DescribeKey every registered key"""
        keys = await asyncio.get_running_loop().run_in_executor(None, service.registry.check)
        healthy = bool(keys) and all(k["status"] == HealthStatus.HEALTHY for k in keys.values())
        return {
            "status": HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY,
            "keys": keys,
        }

    async def liveness_check(self) -> JSONResponse:
        """Kubernetes liveness probe

        Returns:
            200 if service is running
        """
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={
                "status": "alive",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime_seconds": int(time.time() - self.start_time)
            }
        )

    async def readiness_check(self, service: Optional[RecordService]) -> JSONResponse:
        """Kubernetes readiness probe

        Returns:
            200 if the database and every key are reachable, 503 if not
        """
        if service is None:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "message": "Service not initialized"},
            )

        checks = {
            "database": await self.check_database(service),
            "kms": await self.check_kms(service),
        }
        is_ready = all(c["status"] == HealthStatus.HEALTHY for c in checks.values())
        return JSONResponse(
            status_code=status.HTTP_200_OK if is_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "ready" if is_ready else "not_ready",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "checks": checks,
            }
        )
