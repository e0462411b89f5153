import logging
import time
from dataclasses import dataclass, field
from datetime import datetime

from crm_workflows.application.workflow.actions.action_executor import ActionExecutor
from crm_workflows.domain.workflow.exceptions import MissingBranchError, UnknownNodeTypeError
from crm_workflows.domain.workflow.value_objects.condition import ConditionEvaluator
from crm_workflows.domain.workflow.value_objects.delay import DelayScheduler
from crm_workflows.domain.workflow.value_objects.nodes import (
    ActionNode,
    ConditionNode,
    DelayNode,
    EndNode,
    Node,
    TriggerNode,
)
from crm_workflows.ports.secondary.metrics import IMetrics
from crm_workflows.shared.clock import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass
class NodeResult:
    """
    Normalized outcome of executing one node.

    Attributes:
        success (bool): False when the node raised.
        next_node_id (str | None): Explicit successor chosen by a condition.
        should_wait (bool): The enrollment must pause until `wait_until`.
        wait_until (datetime | None): Wake time for delay nodes.
        error (str | None): Failure message when `success` is False.
        context_delta (dict): Keys to merge into the enrollment context.
    """
    success: bool
    next_node_id: str | None = None
    should_wait: bool = False
    wait_until: datetime | None = None
    error: str | None = None
    context_delta: dict = field(default_factory=dict)


class NodeDispatcher:
    """
    Routes a node to the component that executes its type.

    Every exception raised while executing a node is converted into a failed
    NodeResult so the engine applies one error policy regardless of node type.
    """

    def __init__(
        self,
        action_executor: ActionExecutor,
        metrics: IMetrics | None = None,
        clock: Clock | None = None,
    ):
        self._action_executor = action_executor
        self._metrics = metrics
        self._clock = clock or utc_now

    async def dispatch(self, node: Node, record: dict, context: dict) -> NodeResult:
        started = time.perf_counter()
        try:
            result = await self._execute(node, record, context)
        except Exception as e:
            logger.warning(f"Node {node.id} ({node.type}) failed: {e}")
            result = NodeResult(success=False, error=str(e) or type(e).__name__)

        if self._metrics:
            node_type = getattr(node.type, "value", node.type)
            self._metrics.record_node_execution(
                node_type=str(node_type),
                status="success" if result.success else "failed",
                duration=time.perf_counter() - started,
            )
        return result

    async def _execute(self, node: Node, record: dict, context: dict) -> NodeResult:
        if isinstance(node, ActionNode):
            delta = await self._action_executor.execute(node.action, node.config, record, context)
            return NodeResult(success=True, context_delta=delta or {})

        if isinstance(node, ConditionNode):
            outcome = ConditionEvaluator.evaluate(node.conditions, record, context, node.operator)
            next_node_id = node.branch_for(outcome)
            if not next_node_id:
                raise MissingBranchError(node.id, "trueNextId" if outcome else "falseNextId")
            logger.info(f"Condition node {node.id} evaluated to {outcome}")
            return NodeResult(
                success=True,
                next_node_id=next_node_id,
                context_delta={"lastConditionResult": outcome, "lastConditionNodeId": node.id},
            )

        if isinstance(node, DelayNode):
            wait_until = DelayScheduler.compute_wait(node, self._clock())
            return NodeResult(success=True, should_wait=True, wait_until=wait_until)

        if isinstance(node, (EndNode, TriggerNode)):
            return NodeResult(success=True)

        raise UnknownNodeTypeError(node.id, str(node.type))
