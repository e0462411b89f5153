from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from crm_workflows.domain.workflow.exceptions import (
    ActionPreconditionError,
    UnknownActionError,
)


class ActionKind(str, Enum):
    SEND_EMAIL = "send_email"
    CREATE_TASK = "create_task"
    UPDATE_DEAL = "update_deal"
    ASSIGN_DEAL = "assign_deal"
    MOVE_TO_STAGE = "move_to_stage"
    CREATE_ACTIVITY = "create_activity"
    WEBHOOK = "webhook"

    @classmethod
    def parse(cls, value: str) -> "ActionKind":
        try:
            return cls(value)
        except ValueError:
            raise UnknownActionError(str(value))


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


@dataclass(frozen=True)
class SendEmailConfig:
    email_to: str = ""
    email_subject: str = ""
    email_body: str = ""

    @classmethod
    def from_dict(cls, raw: dict) -> "SendEmailConfig":
        return cls(
            email_to=_text(raw.get("emailTo")),
            email_subject=_text(raw.get("emailSubject")),
            email_body=_text(raw.get("emailBody")),
        )


@dataclass(frozen=True)
class CreateTaskConfig:
    title: str = ""
    description: str = ""
    assignee_id: str | None = None
    due_in_days: int | None = None

    @classmethod
    def from_dict(cls, raw: dict) -> "CreateTaskConfig":
        return cls(
            title=_text(raw.get("taskTitle")),
            description=_text(raw.get("taskDescription")),
            assignee_id=raw.get("taskAssignee") or None,
            due_in_days=_parse_days(raw.get("taskDueDate")),
        )


def _parse_days(value: Any) -> int | None:
    """Leading-integer parse; anything unparsable means no due date."""
    if value in (None, "") or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    digits = ""
    for i, ch in enumerate(text):
        if ch.isdigit() or (i == 0 and ch in "+-"):
            digits += ch
        else:
            break
    try:
        return int(digits)
    except ValueError:
        return None


@dataclass(frozen=True)
class UpdateDealConfig:
    deal_id: str | None = None
    value: float | None = None
    status: str | None = None
    tags: list | None = None
    custom_fields: dict | None = None

    @classmethod
    def from_dict(cls, raw: dict) -> "UpdateDealConfig":
        value = raw.get("dealValue")
        if value is not None:
            try:
                value = float(value)
            except (TypeError, ValueError):
                raise ActionPreconditionError(
                    ActionKind.UPDATE_DEAL.value, f"dealValue must be numeric, got {value!r}"
                )
        tags = raw.get("dealTags")
        if tags is not None and not isinstance(tags, list):
            tags = [tags]
        return cls(
            deal_id=raw.get("dealId") or None,
            value=value,
            status=raw.get("dealStatus") or None,
            tags=tags or None,
            custom_fields=raw.get("customFields") or None,
        )

    def updates(self) -> dict:
        patch = {}
        if self.value is not None:
            patch["value"] = self.value
        if self.status:
            patch["status"] = self.status
        if self.tags:
            patch["tags"] = list(self.tags)
        if self.custom_fields:
            patch["customFields"] = dict(self.custom_fields)
        return patch


@dataclass(frozen=True)
class AssignDealConfig:
    assignee_id: str | None = None
    team_id: str | None = None

    @classmethod
    def from_dict(cls, raw: dict) -> "AssignDealConfig":
        return cls(
            assignee_id=raw.get("assigneeId") or None,
            team_id=raw.get("teamId") or None,
        )

    def validate(self) -> None:
        if not self.assignee_id and not self.team_id:
            raise ActionPreconditionError(
                ActionKind.ASSIGN_DEAL.value, "Assign deal requires assigneeId or teamId"
            )


@dataclass(frozen=True)
class MoveToStageConfig:
    stage_id: str | None = None
    pipeline_id: str | None = None

    @classmethod
    def from_dict(cls, raw: dict) -> "MoveToStageConfig":
        return cls(
            stage_id=raw.get("stageId") or None,
            pipeline_id=raw.get("pipelineId") or None,
        )

    def validate(self) -> None:
        if not self.stage_id:
            raise ActionPreconditionError(
                ActionKind.MOVE_TO_STAGE.value, "Move to stage requires stageId"
            )


@dataclass(frozen=True)
class CreateActivityConfig:
    activity_type: str = "custom"
    description: str = ""
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict) -> "CreateActivityConfig":
        return cls(
            activity_type=raw.get("activityType") or "custom",
            description=_text(raw.get("activityDescription")),
            metadata=dict(raw.get("activityMetadata") or {}),
        )


@dataclass(frozen=True)
class WebhookConfig:
    url: str = ""
    method: str = "POST"
    headers: dict = field(default_factory=dict)
    body: Any = None

    @classmethod
    def from_dict(cls, raw: dict) -> "WebhookConfig":
        headers = {"Content-Type": "application/json"}
        headers.update(raw.get("webhookHeaders") or {})
        return cls(
            url=_text(raw.get("webhookUrl")),
            method=_text(raw.get("webhookMethod") or "POST").upper(),
            headers=headers,
            body=raw.get("webhookBody") if raw.get("webhookBody") is not None else {},
        )

    def validate(self) -> None:
        if not self.url:
            raise ActionPreconditionError(
                ActionKind.WEBHOOK.value, "Webhook action requires webhookUrl"
            )

    @property
    def sends_body(self) -> bool:
        return self.method != "GET"


ActionConfig = Union[
    SendEmailConfig,
    CreateTaskConfig,
    UpdateDealConfig,
    AssignDealConfig,
    MoveToStageConfig,
    CreateActivityConfig,
    WebhookConfig,
]

ACTION_CONFIG_TYPES: dict[ActionKind, type] = {
    ActionKind.SEND_EMAIL: SendEmailConfig,
    ActionKind.CREATE_TASK: CreateTaskConfig,
    ActionKind.UPDATE_DEAL: UpdateDealConfig,
    ActionKind.ASSIGN_DEAL: AssignDealConfig,
    ActionKind.MOVE_TO_STAGE: MoveToStageConfig,
    ActionKind.CREATE_ACTIVITY: CreateActivityConfig,
    ActionKind.WEBHOOK: WebhookConfig,
}


def parse_action_config(kind: ActionKind | str, raw: dict | None) -> ActionConfig:
    """
    Parses a free-form action config into its typed variant.

    Raises UnknownActionError for an unknown kind and ActionPreconditionError
    when a statically required field is missing.
    """
    if not isinstance(kind, ActionKind):
        kind = ActionKind.parse(kind)
    config = ACTION_CONFIG_TYPES[kind].from_dict(raw or {})
    validate = getattr(config, "validate", None)
    if validate is not None:
        validate()
    return config
