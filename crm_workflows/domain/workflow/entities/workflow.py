from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

from crm_workflows.domain.workflow.exceptions import (
    EmptyConditionsError,
    InvalidConditionError,
    InvalidWorkflowError,
    MissingBranchError,
    NodeNotFoundError,
    UnknownNodeTypeError,
    UnknownOperatorError,
    WorkflowException,
)
from crm_workflows.domain.workflow.value_objects.action_configs import parse_action_config
from crm_workflows.domain.workflow.value_objects.condition import SUPPORTED_OPERATORS
from crm_workflows.domain.workflow.value_objects.nodes import (
    ActionNode,
    ConditionNode,
    Node,
    TriggerNode,
    UnknownNode,
    parse_node,
)


@dataclass
class WorkflowDefinition:
    """
    Root aggregate for a published workflow graph.

    Attributes:
        name (str): Human-readable name of the workflow.
        start_node_id (str): Node the engine begins every enrollment at.
        nodes (dict[str, Node]): Graph nodes keyed by id for constant-time lookup.
        is_active (bool): Inactive workflows complete their enrollments on next run.
        run_once (bool): A target is enrolled at most once in this workflow.
        id (str): Unique identifier (UUID4 unless supplied).
        created_at (datetime): Timestamp when the workflow was published.
    """

    name: str
    start_node_id: str
    nodes: dict[str, Node] = field(default_factory=dict)
    is_active: bool = True
    run_once: bool = False
    description: str | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def get_node(self, node_id: str) -> Node:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise NodeNotFoundError(node_id, self.id)

    @property
    def trigger_node(self) -> TriggerNode | None:
        start = self.nodes.get(self.start_node_id)
        if isinstance(start, TriggerNode):
            return start
        return next((n for n in self.nodes.values() if isinstance(n, TriggerNode)), None)

    def matches_event(self, event: str, payload: dict | None = None) -> bool:
        trigger = self.trigger_node
        return trigger is not None and trigger.matches(event, payload)

    def validate(self) -> None:
        """
        Checks the graph invariants before a definition is accepted.

        Raises InvalidWorkflowError carrying every problem found, keyed by
        node id, so authors can fix them in one pass.
        """
        if not self.nodes:
            raise InvalidWorkflowError("Workflow has no nodes")
        if self.start_node_id not in self.nodes:
            raise InvalidWorkflowError(
                f"Start node '{self.start_node_id}' does not exist",
                {"start_node_id": self.start_node_id},
            )

        errors: dict[str, str] = {}
        for node_id, node in self.nodes.items():
            try:
                self._validate_node(node)
            except WorkflowException as e:
                errors[node_id] = e.message

        if errors:
            raise InvalidWorkflowError("Workflow definition is invalid", {"errors": errors})

    def _validate_node(self, node: Node) -> None:
        if isinstance(node, UnknownNode):
            raise UnknownNodeTypeError(node.id, node.type_name)

        for successor in node.successor_ids():
            if successor not in self.nodes:
                raise NodeNotFoundError(successor, self.id)

        if isinstance(node, ConditionNode):
            if not node.conditions:
                raise EmptyConditionsError(node.id)
            for branch, target in (("trueNextId", node.true_next_id), ("falseNextId", node.false_next_id)):
                if not target:
                    raise MissingBranchError(node.id, branch)
            for condition in node.conditions:
                if not condition.field or not condition.operator:
                    raise InvalidConditionError("missing field or operator")
                if condition.operator not in SUPPORTED_OPERATORS:
                    raise UnknownOperatorError(condition.operator)

        if isinstance(node, ActionNode):
            parse_action_config(node.action, node.config)

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowDefinition":
        raw_nodes = data.get("nodes") or {}
        if not isinstance(raw_nodes, dict):
            raise InvalidWorkflowError("nodes must be a map keyed by node id")

        kwargs = {}
        if data.get("id"):
            kwargs["id"] = data["id"]
        if isinstance(data.get("createdAt"), datetime):
            kwargs["created_at"] = data["createdAt"]
        elif data.get("createdAt"):
            kwargs["created_at"] = datetime.fromisoformat(data["createdAt"])

        return cls(
            name=data.get("name") or "",
            description=data.get("description"),
            start_node_id=data.get("startNodeId") or "",
            nodes={node_id: parse_node(node_id, raw) for node_id, raw in raw_nodes.items()},
            is_active=bool(data.get("isActive", True)),
            run_once=bool(data.get("runOnce", False)),
            **kwargs,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "isActive": self.is_active,
            "runOnce": self.run_once,
            "startNodeId": self.start_node_id,
            "nodes": {node_id: node.to_dict() for node_id, node in self.nodes.items()},
            "createdAt": self.created_at.isoformat(),
        }
