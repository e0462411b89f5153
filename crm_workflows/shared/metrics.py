from prometheus_client import Counter, Histogram

from crm_workflows.ports.secondary.metrics import IMetrics


class MetricsRegistry(IMetrics):
    """Prometheus metrics registry."""

    def __init__(self):
        # Enrollment metrics
        self.ENROLLMENTS_CREATED_TOTAL = Counter(
            "enrollments_created_total", "Total number of enrollments created", ["workflow_id"]
        )

        self.ENROLLMENT_OUTCOMES_TOTAL = Counter(
            "enrollment_outcomes_total",
            "Total number of engine runs by outcome",
            ["workflow_id", "status"],
        )

        self.ENROLLMENTS_RESUMED_TOTAL = Counter(
            "enrollments_resumed_total", "Total number of waiting enrollments reactivated"
        )

        # Node metrics
        self.NODE_EXECUTIONS_TOTAL = Counter(
            "node_executions_total", "Total number of node executions", ["node_type", "status"]
        )

        self.NODE_DURATION_SECONDS = Histogram(
            "node_duration_seconds",
            "Time taken for node to complete",
            ["node_type"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0),
        )

    def record_enrollment_created(self, workflow_id: str):
        self.ENROLLMENTS_CREATED_TOTAL.labels(workflow_id=workflow_id).inc()

    def record_enrollment_outcome(self, workflow_id: str, status: str):
        self.ENROLLMENT_OUTCOMES_TOTAL.labels(workflow_id=workflow_id, status=status).inc()

    def record_resumed(self, count: int):
        self.ENROLLMENTS_RESUMED_TOTAL.inc(count)

    def record_node_execution(self, node_type: str, status: str, duration: float):
        self.NODE_EXECUTIONS_TOTAL.labels(node_type=node_type, status=status).inc()
        self.NODE_DURATION_SECONDS.labels(node_type=node_type).observe(duration)


# Global registry instance for adapter/framework layer
metrics_registry = MetricsRegistry()
