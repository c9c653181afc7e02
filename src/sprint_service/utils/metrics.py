"""Prometheus metrics for observability."""

from functools import lru_cache

from prometheus_client import Counter, Gauge, Histogram, Info, start_http_server


class Metrics:
    """Prometheus metrics for the sprint board service."""

    def __init__(self) -> None:
        """Initialize all metrics."""
        self.info = Info(
            "sprint_board",
            "Sprint board service information",
        )
        self.info.info({"version": "0.1.0"})

        # Board (facade) operations
        self.board_operations_total = Counter(
            "board_operations_total",
            "Total number of board operations",
            ["operation", "status"],
        )

        self.board_operation_duration_seconds = Histogram(
            "board_operation_duration_seconds",
            "Duration of board operations in seconds",
            ["operation"],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
        )

        # Storage metrics
        self.storage_operations_total = Counter(
            "storage_operations_total",
            "Total number of storage operations",
            ["storage", "operation", "status"],
        )

        self.storage_operation_duration_seconds = Histogram(
            "storage_operation_duration_seconds",
            "Duration of storage operations in seconds",
            ["storage", "operation"],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
        )

        self.storage_connection_status = Gauge(
            "storage_connection_status",
            "Storage connection status (1=connected, 0=disconnected)",
            ["storage"],
        )

        self.backlog_size = Gauge(
            "backlog_size",
            "Number of tasks not assigned to any sprint",
        )

    def record_board_operation(
        self,
        operation: str,
        status: str,
        duration: float,
    ) -> None:
        """Record a board operation metric.

        Args:
            operation: Operation name (move_to_sprint, delete_task, ...)
            status: Operation status (success, error)
            duration: Operation duration in seconds
        """
        self.board_operations_total.labels(
            operation=operation,
            status=status,
        ).inc()
        self.board_operation_duration_seconds.labels(
            operation=operation,
        ).observe(duration)

    def record_storage_operation(
        self,
        storage: str,
        operation: str,
        status: str,
        duration: float | None = None,
    ) -> None:
        """Record a storage operation metric.

        Args:
            storage: Backend name (remote, local)
            operation: Operation name
            status: Operation status (success, error)
            duration: Operation duration in seconds, recorded on success
        """
        self.storage_operations_total.labels(
            storage=storage,
            operation=operation,
            status=status,
        ).inc()
        if duration is not None:
            self.storage_operation_duration_seconds.labels(
                storage=storage,
                operation=operation,
            ).observe(duration)


@lru_cache
def get_metrics() -> Metrics:
    """Get cached metrics instance."""
    return Metrics()


def start_metrics_server(port: int) -> None:
    """Expose the default registry over HTTP."""
    start_http_server(port)
