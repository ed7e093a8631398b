"""
Prometheus instruments shared by the envelope, pool hooks, cache and HTTP
middleware.

Each service process builds one MetricsRegistry at startup and passes it
around; nothing registers on the global prometheus_client REGISTRY, so tests
can build as many isolated registries as they like.
"""

import re
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

HTTP_BUCKETS = (0.1, 0.5, 1, 2, 5, 10)
DB_BUCKETS = (0.01, 0.05, 0.1, 0.5, 1, 2, 5)

ID_PLACEHOLDER = ":id"
# Label for requests no route matched (404s on unknown paths)
UNMATCHED_ROUTE = "unmatched"

_PATH_PARAM = re.compile(r"\{[^}]+\}")


def route_label(template: Optional[str]) -> str:
    """
    Turn a matched route template into a bounded metric label.

    Path parameters collapse to ``:id`` (``/users/{user_id}`` ->
    ``/users/:id``). Requests that matched no route share one label, so the
    label set is fixed by the routing table and never by client input.
    """
    if template is None:
        return UNMATCHED_ROUTE
    route = _PATH_PARAM.sub(ID_PLACEHOLDER, template)
    if len(route) > 1:
        route = route.rstrip("/")
    return route or "/"


class MetricsRegistry:
    """Process-wide instruments on a private CollectorRegistry."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(
        self, registry: CollectorRegistry | None = None, default_collectors: bool = True
    ):
        self.registry = registry or CollectorRegistry()

        if default_collectors:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)
            GCCollector(registry=self.registry)

        self.http_requests_total = Counter(
            "http_requests_total",
            "Total number of HTTP requests",
            ["method", "route", "status_code"],
            registry=self.registry,
        )
        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "Duration of HTTP requests in seconds",
            ["method", "route", "status_code"],
            buckets=HTTP_BUCKETS,
            registry=self.registry,
        )
        self.database_operations_total = Counter(
            "database_operations_total",
            "Total number of database operations",
            ["operation", "status"],
            registry=self.registry,
        )
        self.database_operation_duration = Histogram(
            "database_operation_duration_seconds",
            "Duration of database operations in seconds",
            ["operation"],
            buckets=DB_BUCKETS,
            registry=self.registry,
        )
        self.database_connections_active = Gauge(
            "database_connections_active",
            "Number of active database connections",
            registry=self.registry,
        )
        self.cache_operations_total = Counter(
            "cache_operations_total",
            "Total number of cache lookups by result",
            ["result"],
            registry=self.registry,
        )

    def observe_request(
        self, method: str, route: str, status_code: int, duration: float
    ) -> None:
        labels = {"method": method, "route": route, "status_code": str(status_code)}
        self.http_request_duration.labels(**labels).observe(duration)
        self.http_requests_total.labels(**labels).inc()

    def observe_query(self, operation: str, status: str, duration: float) -> None:
        self.database_operation_duration.labels(operation=operation).observe(duration)
        self.database_operations_total.labels(
            operation=operation, status=status
        ).inc()

    def count_cache(self, result: str) -> None:
        self.cache_operations_total.labels(result=result).inc()

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float | None:
        """Current value of one sample, or None if it was never recorded."""
        return self.registry.get_sample_value(name, labels or {})

    def snapshot(self) -> bytes:
        return generate_latest(self.registry)
