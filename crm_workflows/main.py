from contextlib import asynccontextmanager

from fastapi import FastAPI

from crm_workflows.adapters.primary.api.error_handlers import (
    general_exception_handler,
    workflow_exception_handler,
)
from crm_workflows.adapters.primary.api.routes.enrollments import router as enrollments_router
from crm_workflows.adapters.primary.api.routes.events import router as events_router
from crm_workflows.adapters.primary.api.routes.health import router as health_router
from crm_workflows.adapters.primary.api.routes.metrics import router as metrics_router
from crm_workflows.adapters.primary.api.routes.workflows import router as workflows_router
from crm_workflows.adapters.secondary.redis.redis_message_broker import RedisMessageBroker
from crm_workflows.domain.workflow.exceptions import WorkflowException
from crm_workflows.shared.config import settings
from crm_workflows.shared.database import engine, init_db
from crm_workflows.shared.logger import configure_logging, get_logger
from crm_workflows.shared.redis_client import redis_client

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    await RedisMessageBroker(redis_client).create_consumer_groups()

    logger.info("application_started", version=settings.APP_VERSION)
    yield

    logger.info("application_shutting_down")
    await redis_client.aclose()
    await engine.dispose()
    logger.info("application_shutdown_complete")


app = FastAPI(
    title="CRM Workflow Engine",
    description="Event-driven enrollment engine for CRM automation workflows.",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

app.add_exception_handler(WorkflowException, workflow_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

app.include_router(workflows_router)
app.include_router(enrollments_router)
app.include_router(events_router)
app.include_router(health_router)
app.include_router(metrics_router)
