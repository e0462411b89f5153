from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from crm_workflows.domain.workflow.exceptions import InvalidNodeError


class NodeType(str, Enum):
    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    DELAY = "delay"
    END = "end"


class ConditionOperator(str, Enum):
    AND = "and"
    OR = "or"


# Wire keys consumed by the node parsers; anything else lands in `extra`.
_COMMON_KEYS = {"id", "type", "nextId", "label"}


@dataclass(frozen=True)
class Condition:
    """
    A single field/operator/value test evaluated by a condition node.

    Attributes:
        field (str): Dot-path into the target record, optionally prefixed with
            `context.` or the record type (e.g. `deal.value`).
        operator (str): Comparison operator name (e.g. `greater_than`, `in`).
        value (Any): Right-hand operand.
    """

    field: str
    operator: str
    value: Any = None

    @classmethod
    def from_dict(cls, raw: dict) -> "Condition":
        return cls(
            field=raw.get("field") or "",
            operator=raw.get("operator") or "",
            value=raw.get("value"),
        )

    def to_dict(self) -> dict:
        return {"field": self.field, "operator": self.operator, "value": self.value}


@dataclass(frozen=True)
class BaseNode:
    id: str
    next_id: str | None = None
    label: str | None = None
    extra: dict = field(default_factory=dict)

    type = None

    def successor_ids(self) -> list[str]:
        """Every node id this node may route to."""
        return [self.next_id] if self.next_id else []

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data["id"] = self.id
        data["type"] = self.type.value if isinstance(self.type, NodeType) else self.type
        if self.next_id:
            data["nextId"] = self.next_id
        if self.label:
            data["label"] = self.label
        return data


@dataclass(frozen=True)
class TriggerNode(BaseNode):
    """
    Entry node. Carries the event that enrolls targets; the engine walks
    through it without side effects.
    """

    trigger: str = ""
    status_value: str | None = None
    stage_id: str | None = None

    type = NodeType.TRIGGER

    def matches(self, event: str, payload: dict | None = None) -> bool:
        if self.trigger != event:
            return False
        payload = payload or {}
        if self.status_value and payload.get("status") != self.status_value:
            return False
        if self.stage_id and payload.get("stageId") != self.stage_id:
            return False
        return True

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["trigger"] = self.trigger
        if self.status_value:
            data["statusValue"] = self.status_value
        if self.stage_id:
            data["stageId"] = self.stage_id
        return data


@dataclass(frozen=True)
class ActionNode(BaseNode):
    action: str = ""
    config: dict = field(default_factory=dict)
    error_next_id: str | None = None

    type = NodeType.ACTION

    def successor_ids(self) -> list[str]:
        ids = super().successor_ids()
        if self.error_next_id:
            ids.append(self.error_next_id)
        return ids

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["action"] = self.action
        data["config"] = dict(self.config)
        if self.error_next_id:
            data["errorNextId"] = self.error_next_id
        return data


@dataclass(frozen=True)
class ConditionNode(BaseNode):
    conditions: tuple[Condition, ...] = ()
    operator: ConditionOperator = ConditionOperator.AND
    true_next_id: str | None = None
    false_next_id: str | None = None

    type = NodeType.CONDITION

    def branch_for(self, result: bool) -> str | None:
        return self.true_next_id if result else self.false_next_id

    def successor_ids(self) -> list[str]:
        ids = super().successor_ids()
        ids.extend(i for i in (self.true_next_id, self.false_next_id) if i)
        return ids

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["config"] = {
            "conditions": [c.to_dict() for c in self.conditions],
            "operator": self.operator.value,
        }
        if self.true_next_id:
            data["trueNextId"] = self.true_next_id
        if self.false_next_id:
            data["falseNextId"] = self.false_next_id
        return data


@dataclass(frozen=True)
class DelayNode(BaseNode):
    delay_minutes: float = 0
    delay_hours: float = 0
    delay_days: float = 0

    type = NodeType.DELAY

    @property
    def total_minutes(self) -> float:
        return self.delay_minutes + self.delay_hours * 60 + self.delay_days * 24 * 60

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            {
                "delayMinutes": self.delay_minutes,
                "delayHours": self.delay_hours,
                "delayDays": self.delay_days,
            }
        )
        return data


@dataclass(frozen=True)
class EndNode(BaseNode):
    type = NodeType.END


@dataclass(frozen=True)
class UnknownNode(BaseNode):
    """Node of a type this engine does not implement. Fails when dispatched."""

    type_name: str = ""

    @property
    def type(self) -> str:
        return self.type_name


Node = Union[TriggerNode, ActionNode, ConditionNode, DelayNode, EndNode, UnknownNode]


def _number(node_id: str, raw: dict, key: str) -> float:
    value = raw.get(key)
    if value in (None, ""):
        return 0
    if isinstance(value, bool):
        raise InvalidNodeError(node_id, f"{key} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidNodeError(node_id, f"{key} must be a number, got {value!r}")
    return int(number) if number.is_integer() else number


def _extra(raw: dict, consumed: set[str]) -> dict:
    return {k: v for k, v in raw.items() if k not in _COMMON_KEYS | consumed}


def parse_node(node_id: str, raw: dict) -> Node:
    """
    Builds a typed node from its wire representation.

    The map key is authoritative for the node id; an `id` field inside the
    payload is ignored when it disagrees.
    """
    if not isinstance(raw, dict):
        raise InvalidNodeError(node_id, "node definition must be an object")

    node_type = raw.get("type")
    common = {
        "id": node_id,
        "next_id": raw.get("nextId") or None,
        "label": raw.get("label"),
    }

    if node_type == NodeType.TRIGGER.value:
        consumed = {"trigger", "triggerType", "statusValue", "stageId"}
        return TriggerNode(
            **common,
            extra=_extra(raw, consumed),
            trigger=raw.get("trigger") or raw.get("triggerType") or "",
            status_value=raw.get("statusValue"),
            stage_id=raw.get("stageId"),
        )

    if node_type == NodeType.ACTION.value:
        consumed = {"action", "config", "errorNextId"}
        return ActionNode(
            **common,
            extra=_extra(raw, consumed),
            action=raw.get("action") or "",
            config=dict(raw.get("config") or {}),
            error_next_id=raw.get("errorNextId") or None,
        )

    if node_type == NodeType.CONDITION.value:
        consumed = {"config", "trueNextId", "falseNextId"}
        config = raw.get("config") or {}
        raw_conditions = config.get("conditions") or []
        if not isinstance(raw_conditions, list):
            raise InvalidNodeError(node_id, "config.conditions must be a list")
        operator = str(config.get("operator") or "and").lower()
        if operator not in (ConditionOperator.AND.value, ConditionOperator.OR.value):
            raise InvalidNodeError(node_id, f"unsupported condition operator '{operator}'")
        return ConditionNode(
            **common,
            extra=_extra(raw, consumed),
            conditions=tuple(Condition.from_dict(c) for c in raw_conditions),
            operator=ConditionOperator(operator),
            true_next_id=raw.get("trueNextId") or None,
            false_next_id=raw.get("falseNextId") or None,
        )

    if node_type == NodeType.DELAY.value:
        consumed = {"delayMinutes", "delayHours", "delayDays"}
        return DelayNode(
            **common,
            extra=_extra(raw, consumed),
            delay_minutes=_number(node_id, raw, "delayMinutes"),
            delay_hours=_number(node_id, raw, "delayHours"),
            delay_days=_number(node_id, raw, "delayDays"),
        )

    if node_type == NodeType.END.value:
        return EndNode(**common, extra=_extra(raw, set()))

    return UnknownNode(**common, extra=_extra(raw, set()), type_name=str(node_type))
