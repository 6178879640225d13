"""FastAPI monitoring endpoint for health, readiness and metrics."""

from typing import Optional

from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse
from loguru import logger

from docgate.exceptions import NotFoundError, ServiceUnavailableError
from docgate.runtime import Runtime
from docgate.services.error_tracker import ErrorFilter, Severity
from docgate.services.health import HealthStatus


class MonitoringServer:
    """Thin HTTP surface over a Runtime's health and telemetry accessors."""

    def __init__(self, runtime: Runtime):
        self.runtime = runtime
        self.app = FastAPI(title="docgate monitoring")

        # Register routes
        self.app.get("/live")(self.live)
        self.app.get("/health")(self.health)
        self.app.get("/ready")(self.ready)
        self.app.get("/metrics")(self.metrics)
        self.app.get("/errors")(self.errors)
        self.app.post("/errors/{error_id}/resolve")(self.resolve_error)
        self.app.post("/circuits/{name}/reset")(self.reset_circuit)

    async def live(self):
        """Liveness endpoint."""
        return {"alive": await self.runtime.health.is_alive()}

    async def health(self):
        """Aggregated health; 503 when any check is unhealthy."""
        report = await self.runtime.health.get_health_status()
        status_code = 503 if report["status"] == HealthStatus.UNHEALTHY.value else 200
        return JSONResponse(content=report, status_code=status_code)

    async def ready(self, service: Optional[list[str]] = Query(None)):
        """Readiness for the given critical services (default: database)."""
        services = service or ["database"]
        if not await self.runtime.health.is_ready(services):
            logger.warning(f"Readiness check failed for {services}")
            raise ServiceUnavailableError({"ready": False, "services": services})
        return {"ready": True, "services": services}

    async def metrics(self):
        """Metrics snapshot for dashboard polling."""
        return self.runtime.metrics_snapshot()

    async def errors(
        self,
        service: Optional[str] = None,
        severity: Optional[Severity] = None,
        resolved: Optional[bool] = None,
        limit: int = 50,
    ):
        """Tracked errors, most recent first."""
        tracked = self.runtime.error_tracker.get_errors_by_filter(
            ErrorFilter(service=service, severity=severity, resolved=resolved)
        )
        return [e.to_dict() for e in tracked[:limit]]

    async def resolve_error(self, error_id: str):
        if not self.runtime.error_tracker.resolve_error(error_id):
            raise NotFoundError(f"Unknown error: {error_id}")
        return {"resolved": error_id}

    async def reset_circuit(self, name: str):
        if not self.runtime.breakers.reset(name):
            raise NotFoundError(f"Unknown circuit breaker: {name}")
        return {"reset": name}


def create_monitoring_app(runtime: Runtime) -> FastAPI:
    """Create FastAPI app for a runtime.

    Args:
        runtime: Runtime whose components are exposed

    Returns:
        FastAPI app
    """
    server = MonitoringServer(runtime)
    return server.app
