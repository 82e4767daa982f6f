"""Escalation policy: decide whether a trigger routes work to the controller."""

from __future__ import annotations

from mission_control.errors import MissionControlError
from mission_control.squad.models import EscalationTrigger
from mission_control.squad.registry import AgentRegistry


class UnknownTrigger(MissionControlError, ValueError):
    """Trigger is not a member of the closed escalation enumeration."""


class EscalationEvaluator:
    """Pure decision function over the registry's escalation triggers."""

    def __init__(self, registry: AgentRegistry) -> None:
        self.registry = registry

    def should_escalate(self, agent_id: str, trigger: EscalationTrigger | str) -> bool:
        """Return True when ``trigger`` escalates work owned by ``agent_id``.

        The controller never escalates. Unknown triggers raise instead of
        returning False so that new failure modes cannot pass silently.
        """

        resolved = _resolve_trigger(trigger)
        agent = self.registry.get(agent_id)
        if agent.is_controller:
            return False
        return resolved in agent.escalation_triggers

    def escalation_target(self) -> str:
        return self.registry.controller.id


def _resolve_trigger(trigger: EscalationTrigger | str) -> EscalationTrigger:
    if isinstance(trigger, EscalationTrigger):
        return trigger
    try:
        return EscalationTrigger(trigger)
    except ValueError:
        raise UnknownTrigger(f"Unknown escalation trigger: {trigger!r}") from None
