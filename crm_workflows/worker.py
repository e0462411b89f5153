import asyncio
import signal
from typing import Callable
from uuid import uuid4

from crm_workflows.adapters.secondary.http.httpx_webhook_client import HttpxWebhookClient
from crm_workflows.adapters.secondary.http.resend_email_transport import ResendEmailTransport
from crm_workflows.adapters.secondary.persistence.pg_enrollment_repository import PostgresEnrollmentRepository
from crm_workflows.adapters.secondary.persistence.pg_record_store import PostgresRecordStore
from crm_workflows.adapters.secondary.persistence.pg_workflow_repository import PostgresWorkflowRepository
from crm_workflows.adapters.secondary.redis.redis_message_broker import RedisMessageBroker
from crm_workflows.adapters.secondary.redis.redis_state_store import RedisStateStore
from crm_workflows.application.workflow.actions.action_executor import ActionExecutor
from crm_workflows.application.workflow.services.node_dispatcher import NodeDispatcher
from crm_workflows.application.workflow.use_cases.run_enrollment import (
    EngineLimits,
    RunEnrollmentUseCase,
    RunOutcome,
)
from crm_workflows.ports.secondary.email_transport import IEmailTransport
from crm_workflows.ports.secondary.enrollment_repository import IEnrollmentRepository
from crm_workflows.ports.secondary.message_broker import EnrollmentSignal, IMessageBroker
from crm_workflows.ports.secondary.state_store import IStateStore
from crm_workflows.ports.secondary.webhook_client import IWebhookClient
from crm_workflows.shared.config import settings
from crm_workflows.shared.logger import bind_context, clear_context, get_logger
from crm_workflows.shared.metrics import metrics_registry
from crm_workflows.shared.redis_client import redis_client

logger = get_logger(__name__)

EngineFactory = Callable[[object], tuple[RunEnrollmentUseCase, IEnrollmentRepository]]


class EngineWorkerRunner:
    """Consumes enrollment signals from Redis Streams and runs the engine for each one."""

    def __init__(
        self,
        broker: IMessageBroker | None = None,
        state_store: IStateStore | None = None,
        session_factory=None,
        email_transport: IEmailTransport | None = None,
        webhook_client: IWebhookClient | None = None,
        engine_factory: EngineFactory | None = None,
    ):
        self._broker = broker or RedisMessageBroker(redis_client)
        self._state_store = state_store or RedisStateStore(redis_client)
        if session_factory is None:
            from crm_workflows.shared.database import async_session_factory
            session_factory = async_session_factory
        self._session_factory = session_factory
        self._email_transport = email_transport or ResendEmailTransport()
        self._webhook_client = webhook_client or HttpxWebhookClient()
        self._engine_factory = engine_factory or self._build_engine
        self._limits = EngineLimits(
            max_nodes_per_execution=settings.ENGINE_MAX_NODES_PER_EXECUTION,
            max_node_visits=settings.ENGINE_MAX_NODE_VISITS,
            debounce_seconds=settings.ENGINE_DEBOUNCE_SECONDS,
        )
        self._consumer_name = f"engine-{uuid4().hex[:8]}"

    def _build_engine(self, session) -> tuple[RunEnrollmentUseCase, IEnrollmentRepository]:
        enrollment_repository = PostgresEnrollmentRepository(session)
        record_store = PostgresRecordStore(session)
        executor = ActionExecutor.with_default_handlers(
            record_store=record_store,
            email_transport=self._email_transport,
            webhook_client=self._webhook_client,
        )
        engine = RunEnrollmentUseCase(
            enrollment_repository=enrollment_repository,
            workflow_repository=PostgresWorkflowRepository(session),
            record_store=record_store,
            dispatcher=NodeDispatcher(executor, metrics_registry),
            metrics=metrics_registry,
            limits=self._limits,
        )
        return engine, enrollment_repository

    async def run(self) -> None:
        logger.info("worker_starting", consumer_name=self._consumer_name, batch_size=settings.WORKER_BATCH_SIZE)
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
                signals = await self._broker.consume_signals(
                    consumer_group=RedisMessageBroker.ENROLLMENT_GROUP,
                    consumer_name=self._consumer_name,
                    count=settings.WORKER_BATCH_SIZE,
                    block_ms=settings.WORKER_BLOCK_MS,
                )
                if signals:
                    await asyncio.gather(*[self.process_signal(s) for s in signals])
            except Exception as e:
                logger.error("worker_main_loop_error", error=str(e), exc_info=True)
                if not shutdown_event.is_set():
                    await asyncio.sleep(settings.WORKER_ERROR_PAUSE_SECONDS)

        logger.info("worker_shutdown_complete")

    async def process_signal(self, enrollment_signal: EnrollmentSignal) -> RunOutcome | None:
        """
        Runs the engine for one signal.

        Duplicates and signals for an enrollment another worker is already
        running are acknowledged without work. Infrastructure errors leave the
        signal unacknowledged so the resumer can reclaim it.
        """
        bind_context({"enrollment_id": enrollment_signal.enrollment_id, "sequence": enrollment_signal.sequence})
        lock_key = f"enrollment:{enrollment_signal.enrollment_id}"
        locked = False

        try:
            if await self._state_store.is_processed(enrollment_signal.id):
                logger.info("skipping_duplicate_signal", signal_id=enrollment_signal.id)
                await self._ack(enrollment_signal)
                return None

            locked = await self._state_store.acquire_lock(lock_key, settings.LOCK_TTL_SECONDS)
            if not locked:
                logger.info("enrollment_locked_elsewhere")
                await self._ack(enrollment_signal)
                return None

            try:
                async with self._session_factory() as session:
                    engine, enrollment_repository = self._engine_factory(session)
                    outcome = await engine.execute(enrollment_signal.enrollment_id, enrollment_signal.sequence)

                    if outcome == RunOutcome.YIELDED:
                        enrollment = await enrollment_repository.get_by_id(enrollment_signal.enrollment_id)
                        await self._broker.publish_signal(
                            EnrollmentSignal(
                                enrollment_id=enrollment.id,
                                sequence=enrollment.sequence,
                                retry=enrollment.retry_count,
                            )
                        )
                        logger.info("enrollment_yielded", next_sequence=enrollment.sequence)
            except Exception as e:
                logger.error("signal_processing_failed", error=str(e), exc_info=True)
                return None

            logger.info("signal_processed", outcome=outcome.value)
            await self._state_store.mark_processed(enrollment_signal.id, settings.WORKER_IDEMPOTENCY_TTL_SECONDS)
            await self._ack(enrollment_signal)
            return outcome
        finally:
            if locked:
                await self._state_store.release_lock(lock_key)
            clear_context()

    async def _ack(self, enrollment_signal: EnrollmentSignal) -> None:
        if enrollment_signal.stream_id:
            await self._broker.acknowledge_signal(enrollment_signal.stream_id)


async def main():
    runner = EngineWorkerRunner()
    await runner.run()


if __name__ == "__main__":
    from crm_workflows.shared.logger import configure_logging
    configure_logging()
    asyncio.run(main())
