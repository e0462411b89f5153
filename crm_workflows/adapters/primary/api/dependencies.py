from crm_workflows.adapters.secondary.persistence.pg_enrollment_repository import PostgresEnrollmentRepository
from crm_workflows.adapters.secondary.persistence.pg_record_store import PostgresRecordStore
from crm_workflows.adapters.secondary.persistence.pg_workflow_repository import PostgresWorkflowRepository
from crm_workflows.adapters.secondary.redis.redis_message_broker import RedisMessageBroker
from crm_workflows.application.workflow.use_cases.cancel_enrollment import CancelEnrollmentUseCase
from crm_workflows.application.workflow.use_cases.enroll_target import EnrollTargetUseCase
from crm_workflows.application.workflow.use_cases.get_enrollment_status import GetEnrollmentStatusUseCase
from crm_workflows.application.workflow.use_cases.resume_due_enrollments import ResumeDueEnrollmentsUseCase
from crm_workflows.application.workflow.use_cases.retry_enrollment import RetryEnrollmentUseCase
from crm_workflows.application.workflow.use_cases.submit_workflow import (
    SetWorkflowActiveUseCase,
    SubmitWorkflowUseCase,
)
from crm_workflows.shared.config import settings
from crm_workflows.shared.database import async_session_factory
from crm_workflows.shared.metrics import metrics_registry
from crm_workflows.shared.redis_client import redis_client


async def get_workflow_repository() -> PostgresWorkflowRepository:
    async with async_session_factory() as session:
        yield PostgresWorkflowRepository(session)


async def get_submit_workflow_use_case() -> SubmitWorkflowUseCase:
    async with async_session_factory() as session:
        yield SubmitWorkflowUseCase(workflow_repository=PostgresWorkflowRepository(session))


async def get_set_workflow_active_use_case() -> SetWorkflowActiveUseCase:
    async with async_session_factory() as session:
        yield SetWorkflowActiveUseCase(workflow_repository=PostgresWorkflowRepository(session))


async def get_enroll_target_use_case() -> EnrollTargetUseCase:
    async with async_session_factory() as session:
        yield EnrollTargetUseCase(
            workflow_repository=PostgresWorkflowRepository(session),
            enrollment_repository=PostgresEnrollmentRepository(session),
            record_store=PostgresRecordStore(session),
            message_broker=RedisMessageBroker(redis_client),
            metrics=metrics_registry,
        )


async def get_enrollment_status_use_case() -> GetEnrollmentStatusUseCase:
    async with async_session_factory() as session:
        yield GetEnrollmentStatusUseCase(enrollment_repository=PostgresEnrollmentRepository(session))


async def get_cancel_enrollment_use_case() -> CancelEnrollmentUseCase:
    async with async_session_factory() as session:
        yield CancelEnrollmentUseCase(enrollment_repository=PostgresEnrollmentRepository(session))


async def get_retry_enrollment_use_case() -> RetryEnrollmentUseCase:
    async with async_session_factory() as session:
        yield RetryEnrollmentUseCase(
            enrollment_repository=PostgresEnrollmentRepository(session),
            message_broker=RedisMessageBroker(redis_client),
            default_max_retries=settings.ENGINE_MAX_RETRIES,
        )


async def get_resume_due_use_case() -> ResumeDueEnrollmentsUseCase:
    async with async_session_factory() as session:
        yield ResumeDueEnrollmentsUseCase(
            enrollment_repository=PostgresEnrollmentRepository(session),
            message_broker=RedisMessageBroker(redis_client),
            metrics=metrics_registry,
        )
