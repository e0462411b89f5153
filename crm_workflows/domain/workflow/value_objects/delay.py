from datetime import datetime, timedelta

from crm_workflows.domain.workflow.value_objects.nodes import DelayNode


class DelayScheduler:
    """
    Computes wake times for delay nodes.

    A zero-length delay still pauses the enrollment; it is picked up by the
    next resumer sweep rather than falling through to the next node.
    """

    @staticmethod
    def compute_wait(node: DelayNode, now: datetime) -> datetime:
        return now + timedelta(minutes=node.total_minutes)
