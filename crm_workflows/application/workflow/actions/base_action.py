from abc import ABC, abstractmethod

from crm_workflows.domain.workflow.value_objects.action_configs import ActionConfig, ActionKind


class BaseActionHandler(ABC):
    """
    One side-effecting action kind.

    The executor resolves templates and parses the typed config before calling
    `run`; handlers only see resolved values.
    """

    @property
    @abstractmethod
    def action_kind(self) -> ActionKind:
        pass

    def check_target(self, record: dict, config: dict) -> None:
        """Raises ActionPreconditionError when the target record cannot take this action."""
        return None

    @abstractmethod
    async def run(self, config: ActionConfig, record: dict, context: dict) -> dict:
        """Performs the action and returns the context delta."""
        pass
