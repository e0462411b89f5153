import logging

from crm_workflows.domain.workflow.exceptions import InvalidEnrollmentStateError
from crm_workflows.ports.secondary.enrollment_repository import IEnrollmentRepository
from crm_workflows.ports.secondary.message_broker import EnrollmentSignal, IMessageBroker
from crm_workflows.ports.secondary.metrics import IMetrics
from crm_workflows.shared.clock import Clock, utc_now

logger = logging.getLogger(__name__)


class ResumeDueEnrollmentsUseCase:
    """
    Reactivates WAITING enrollments whose wake time has passed.

    Each due enrollment goes back to ACTIVE and is signalled to the engine at
    its current sequence. lastExecutedAt is left untouched so the engine's
    debounce cannot swallow the resume. Running two sweeps at once is harmless:
    the duplicate signal carries the same deduplication key.
    """

    def __init__(
        self,
        enrollment_repository: IEnrollmentRepository,
        message_broker: IMessageBroker,
        metrics: IMetrics | None = None,
        clock: Clock | None = None,
    ):
        self._enrollment_repository = enrollment_repository
        self._message_broker = message_broker
        self._metrics = metrics
        self._clock = clock or utc_now

    async def execute(self, limit: int = 100) -> list[str]:
        now = self._clock()
        due = await self._enrollment_repository.find_due_waiting(now, limit)

        resumed = []
        for enrollment in due:
            try:
                patch = enrollment.resume()
            except InvalidEnrollmentStateError:
                logger.warning(f"Enrollment {enrollment.id} changed state before resume; skipping")
                continue
            await self._enrollment_repository.update(enrollment.id, patch)
            await self._message_broker.publish_signal(
                EnrollmentSignal(
                    enrollment_id=enrollment.id, sequence=enrollment.sequence, retry=enrollment.retry_count
                )
            )
            resumed.append(enrollment.id)

        if resumed:
            logger.info(f"Resumed {len(resumed)} waiting enrollment(s)")
            if self._metrics:
                self._metrics.record_resumed(len(resumed))
        return resumed
