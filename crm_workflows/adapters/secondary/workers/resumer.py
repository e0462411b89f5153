import asyncio
import signal
from uuid import uuid4

from crm_workflows.adapters.secondary.persistence.pg_enrollment_repository import PostgresEnrollmentRepository
from crm_workflows.adapters.secondary.redis.redis_message_broker import RedisMessageBroker
from crm_workflows.application.workflow.use_cases.resume_due_enrollments import ResumeDueEnrollmentsUseCase
from crm_workflows.domain.workflow.value_objects.enrollment_status import EnrollmentStatus
from crm_workflows.ports.secondary.message_broker import EnrollmentSignal, IMessageBroker
from crm_workflows.shared.config import settings
from crm_workflows.shared.logger import get_logger
from crm_workflows.shared.metrics import metrics_registry
from crm_workflows.shared.redis_client import redis_client

logger = get_logger(__name__)


class ResumerRunner:
    """
    Periodic sweep with two jobs:
        1. Wake WAITING enrollments whose delay has elapsed.
        2. Recover signals a crashed worker read but never acknowledged
           (XAUTOCLAIM). Each one is re-issued at the enrollment's current
           sequence if it is still ACTIVE, and the original is ACKed.
    """

    def __init__(
        self,
        broker: IMessageBroker | None = None,
        session_factory=None,
        check_interval_seconds: int | None = None,
        batch_size: int | None = None,
        min_idle_seconds: int | None = None,
    ):
        self._broker = broker or RedisMessageBroker(redis_client)
        if session_factory is None:
            from crm_workflows.shared.database import async_session_factory
            session_factory = async_session_factory
        self._session_factory = session_factory
        self._check_interval = (
            check_interval_seconds if check_interval_seconds is not None else settings.RESUMER_CHECK_INTERVAL_SECONDS
        )
        self._batch_size = batch_size if batch_size is not None else settings.RESUMER_BATCH_SIZE
        self._min_idle_ms = (
            min_idle_seconds if min_idle_seconds is not None else settings.RESUMER_STALLED_MIN_IDLE_SECONDS
        ) * 1000
        self._consumer_name = f"resumer-{uuid4().hex[:8]}"

    async def run(self) -> None:
        logger.info(
            "resumer_started",
            consumer_name=self._consumer_name,
            check_interval_seconds=self._check_interval,
            min_idle_ms=self._min_idle_ms,
        )
        await self._broker.create_consumer_groups()

        loop = asyncio.get_running_loop()
        shutdown_event = asyncio.Event()

        def signal_handler():
            logger.info("shutdown_signal_received")
            shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            pass

        while not shutdown_event.is_set():
            try:
                await self.resume_due()
                await self.reclaim_stalled()
            except Exception as e:
                logger.error("resumer_cycle_error", error=str(e), exc_info=True)

            if not shutdown_event.is_set():
                try:
                    await asyncio.wait_for(shutdown_event.wait(), timeout=self._check_interval)
                except asyncio.TimeoutError:
                    pass

        logger.info("resumer_shutdown_complete")

    async def resume_due(self) -> list[str]:
        async with self._session_factory() as session:
            use_case = ResumeDueEnrollmentsUseCase(
                enrollment_repository=PostgresEnrollmentRepository(session),
                message_broker=self._broker,
                metrics=metrics_registry,
            )
            resumed = await use_case.execute(limit=self._batch_size)
        if resumed:
            logger.info("enrollments_resumed", count=len(resumed))
        return resumed

    async def reclaim_stalled(self) -> int:
        signals = await self._broker.claim_stalled_signals(
            consumer_group=RedisMessageBroker.ENROLLMENT_GROUP,
            new_consumer=self._consumer_name,
            min_idle_ms=self._min_idle_ms,
            count=settings.RESUMER_STALLED_BATCH_SIZE,
        )
        if not signals:
            return 0

        async with self._session_factory() as session:
            repository = PostgresEnrollmentRepository(session)
            for stalled in signals:
                # The crashed run may have persisted nodes past the stalled sequence
                enrollment = await repository.get_by_id(stalled.enrollment_id)
                if enrollment is not None and enrollment.status == EnrollmentStatus.ACTIVE:
                    await self._broker.publish_signal(
                        EnrollmentSignal(
                            enrollment_id=enrollment.id,
                            sequence=enrollment.sequence,
                            retry=enrollment.retry_count,
                        )
                    )
                    logger.info(
                        "stalled_signal_recovered",
                        enrollment_id=stalled.enrollment_id,
                        stalled_sequence=stalled.sequence,
                        sequence=enrollment.sequence,
                    )
                else:
                    logger.info("stalled_signal_dropped", enrollment_id=stalled.enrollment_id)
                if stalled.stream_id:
                    await self._broker.acknowledge_signal(stalled.stream_id)
        return len(signals)


if __name__ == "__main__":
    from crm_workflows.shared.logger import configure_logging
    configure_logging()
    asyncio.run(ResumerRunner().run())
