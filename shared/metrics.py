"""
Shared metrics configuration for the policy decision service.
"""

from typing import Dict, Any, Optional

from prometheus_client import Counter, Histogram, Info, CollectorRegistry


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry unless one is passed in, so several
    collectors (one per test, for example) never clash on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_policy_metrics()

    def _setup_policy_metrics(self):
        """Set up policy-evaluation metrics."""
        self._metrics["policy_decisions_total"] = Counter(
            "policy_decisions_total",
            "Total policy decisions",
            ["outcome", "check"],
            registry=self.registry
        )

        self._metrics["policy_evaluation_duration_seconds"] = Histogram(
            "policy_evaluation_duration_seconds",
            "Policy evaluation duration in seconds",
            registry=self.registry
        )

        self._metrics["cache_operations_total"] = Counter(
            "cache_operations_total",
            "Total cache operations",
            ["operation", "result"],
            registry=self.registry
        )

        self._metrics["usage_tracking_failures_total"] = Counter(
            "usage_tracking_failures_total",
            "Usage events that could not be recorded",
            ["resource_type"],
            registry=self.registry
        )

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_decision(self, allowed: bool, check: Optional[str], duration: float):
        """Record a policy decision and how long it took."""
        self._metrics["policy_decisions_total"].labels(
            outcome="allow" if allowed else "deny",
            check=check or "none"
        ).inc()
        self._metrics["policy_evaluation_duration_seconds"].observe(duration)

    def record_cache_operation(self, operation: str, result: str):
        """Record a cache hit, miss or error."""
        self._metrics["cache_operations_total"].labels(operation=operation, result=result).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()

    def sample_value(self, metric_name: str, **labels) -> float:
        """Read the current value of a sample; 0.0 when it was never set."""
        value = self.registry.get_sample_value(metric_name, labels)
        return value or 0.0


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
