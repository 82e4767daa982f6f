"""Static catalogue of agent definitions.

The catalogue is a closed table validated once at process start: ids are
unique, exactly one controller exists and the controller never escalates.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from mission_control.errors import MissionControlError
from mission_control.squad.models import (
    SYSTEM_ACTOR,
    ActorType,
    AgentDefinition,
    Capability,
    CostProfile,
    EscalationTrigger,
    ModelSettings,
)


class UnknownAgent(MissionControlError, KeyError):
    """Agent id is not present in the registry."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Unknown agent: {agent_id}")
        self.agent_id = agent_id

    def __str__(self) -> str:
        return f"Unknown agent: {self.agent_id}"


class RegistryError(MissionControlError, ValueError):
    """Agent catalogue violates a startup invariant."""


class AgentRegistry:
    """Pure lookup table over immutable agent definitions."""

    def __init__(self, definitions: Iterable[AgentDefinition]) -> None:
        self._agents: dict[str, AgentDefinition] = {}
        for definition in definitions:
            if not definition.id or definition.id == SYSTEM_ACTOR:
                raise RegistryError(f"Invalid agent id: {definition.id!r}")
            if definition.id in self._agents:
                raise RegistryError(f"Duplicate agent id: {definition.id!r}")
            if definition.cost_profile.estimated_cost_per_1k_tokens < 0:
                raise RegistryError(f"Negative token price for agent {definition.id!r}")
            if definition.cost_profile.daily_budget < 0:
                raise RegistryError(f"Negative daily budget for agent {definition.id!r}")
            self._agents[definition.id] = definition

        controllers = [agent for agent in self._agents.values() if agent.is_controller]
        if len(controllers) != 1:
            raise RegistryError(
                f"Exactly one controller agent is required, found {len(controllers)}.",
            )
        if controllers[0].escalation_triggers:
            raise RegistryError(
                f"Controller {controllers[0].id!r} must not declare escalation triggers.",
            )
        self._controller = controllers[0]

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __iter__(self) -> Iterator[AgentDefinition]:
        return iter(self._agents.values())

    def __len__(self) -> int:
        return len(self._agents)

    @property
    def controller(self) -> AgentDefinition:
        return self._controller

    def get(self, agent_id: str) -> AgentDefinition:
        try:
            return self._agents[agent_id]
        except KeyError:
            raise UnknownAgent(agent_id) from None

    def all(self) -> list[AgentDefinition]:
        return list(self._agents.values())

    def active(self) -> list[AgentDefinition]:
        """Agents available for work (excludes catalogued future agents)."""

        return [agent for agent in self._agents.values() if agent.active]

    def sub_agents(self) -> list[AgentDefinition]:
        return [agent for agent in self.active() if not agent.is_controller]

    def estimate_cost(self, agent_id: str, tokens: int) -> Decimal:
        """``(tokens / 1000) * estimated_cost_per_1k_tokens``."""

        if tokens < 0:
            raise ValueError(f"Token count must be >= 0, got {tokens}")
        rate = self.get(agent_id).cost_profile.estimated_cost_per_1k_tokens
        return Decimal(tokens) / Decimal(1000) * rate

    def can(self, agent_id: str, capability: Capability) -> bool:
        agent = self.get(agent_id)
        if agent.is_controller:
            return True
        return Capability(capability) in agent.capabilities

    def actor_type(self, actor: str) -> ActorType:
        if actor == SYSTEM_ACTOR:
            return ActorType.SYSTEM
        if actor == self._controller.id:
            return ActorType.MAIN
        return ActorType.SUBAGENT

    def system_prompt(self, agent_id: str) -> str:
        """Persona prompt handed to the executor for this agent."""

        agent = self.get(agent_id)
        capabilities = ", ".join(sorted(capability.value for capability in agent.capabilities))
        lines = [
            f"You are {agent.title or agent.display_name}, also known as {agent.display_name}.",
            "",
        ]
        if agent.personality:
            lines.extend([agent.personality, ""])
        lines.append(f"YOUR ROLE: {agent.role}")
        if agent.description:
            lines.append(agent.description)
        lines.extend(
            [
                "",
                f"You work under {self._controller.display_name}, the squad controller.",
                f"Available tools: {capabilities or 'none'}.",
            ],
        )
        if agent.escalation_triggers:
            triggers = ", ".join(sorted(trigger.value for trigger in agent.escalation_triggers))
            lines.append(
                f"Escalate to {self._controller.display_name} when: {triggers}.",
            )
        return "\n".join(lines)


_ALL_CAPABILITIES = frozenset(Capability)

DEFAULT_AGENTS: tuple[AgentDefinition, ...] = (
    AgentDefinition(
        id="garion",
        display_name="Garion",
        title="Belgarion, Overlord of the West",
        role="Master Controller",
        description=(
            "Strategic planner and orchestrator of the squad. Makes high-level decisions, "
            "coordinates parallel work, and ensures quality."
        ),
        personality=(
            "Thoughtful, strategic, protective of resources. Always considers cost-benefit "
            "before acting. Delegates effectively but maintains oversight."
        ),
        model=ModelSettings(provider="anthropic", model="claude-sonnet-4", temperature=0.7),
        capabilities=_ALL_CAPABILITIES,
        cost_profile=CostProfile(
            estimated_cost_per_1k_tokens=Decimal("3.0"),
            daily_budget=Decimal("10.0"),
        ),
        escalation_triggers=frozenset(),
        is_controller=True,
    ),
    AgentDefinition(
        id="silk",
        display_name="Silk",
        title="Prince Kheldar of Drasnia",
        role="Code Architect",
        description=(
            "Generates clean, efficient code and finds the smartest path through "
            "technical problems."
        ),
        personality="Witty, clever, resourceful. Values elegance over brute force.",
        model=ModelSettings(provider="openai", model="codex", temperature=0.3),
        capabilities=frozenset(
            {
                Capability.READ_FILES,
                Capability.WRITE_FILES,
                Capability.EDIT_FILES,
                Capability.EXEC_COMMAND,
                Capability.DATABASE_READ,
                Capability.DATABASE_WRITE,
            },
        ),
        cost_profile=CostProfile(
            estimated_cost_per_1k_tokens=Decimal("2.0"),
            daily_budget=Decimal("5.0"),
        ),
        escalation_triggers=frozenset(
            {
                EscalationTrigger.COMPLEX_REASONING_NEEDED,
                EscalationTrigger.UNCLEAR_TASK,
                EscalationTrigger.SAFETY_CONCERN,
            },
        ),
    ),
    AgentDefinition(
        id="barak",
        display_name="Barak",
        title="Barak, Earl of Trellheim",
        role="Research Analyst",
        description="Goes deep into competitive analysis and market intelligence.",
        personality="Intense, thorough, relentless. Values depth over speed.",
        model=ModelSettings(provider="moonshot", model="kimi-k2-turbo", temperature=0.5),
        capabilities=frozenset(
            {
                Capability.READ_FILES,
                Capability.WEB_SEARCH,
                Capability.WEB_FETCH,
                Capability.WRITE_FILES,
                Capability.DATABASE_READ,
                Capability.DATABASE_WRITE,
            },
        ),
        cost_profile=CostProfile(
            estimated_cost_per_1k_tokens=Decimal("0.25"),
            daily_budget=Decimal("2.0"),
        ),
        escalation_triggers=frozenset(
            {
                EscalationTrigger.COMPLEX_REASONING_NEEDED,
                EscalationTrigger.SAFETY_CONCERN,
            },
        ),
    ),
    AgentDefinition(
        id="polgara",
        display_name="Polgara",
        title="Polgara the Sorceress",
        role="Content Strategist",
        description="Creates compelling content that ranks and converts.",
        personality="Wise, patient, protective of brand voice.",
        model=ModelSettings(provider="moonshot", model="kimi-k2-turbo", temperature=0.8),
        capabilities=frozenset(
            {
                Capability.READ_FILES,
                Capability.WEB_SEARCH,
                Capability.WEB_FETCH,
                Capability.WRITE_FILES,
                Capability.EDIT_FILES,
                Capability.DATABASE_READ,
                Capability.DATABASE_WRITE,
            },
        ),
        cost_profile=CostProfile(
            estimated_cost_per_1k_tokens=Decimal("0.25"),
            daily_budget=Decimal("2.0"),
        ),
        escalation_triggers=frozenset(
            {EscalationTrigger.UNCLEAR_TASK, EscalationTrigger.SAFETY_CONCERN},
        ),
    ),
    AgentDefinition(
        id="cenedra",
        display_name="Ce'Nedra",
        title="Ce'Nedra, Queen of Riva",
        role="Social Intelligence",
        description="Monitors social channels for trends, competitor mentions and opportunities.",
        personality="Charming, observant, connected.",
        model=ModelSettings(provider="xai", model="grok", temperature=0.7),
        capabilities=frozenset(
            {
                Capability.WEB_SEARCH,
                Capability.WEB_FETCH,
                Capability.WRITE_FILES,
                Capability.DATABASE_READ,
                Capability.DATABASE_WRITE,
            },
        ),
        cost_profile=CostProfile(
            estimated_cost_per_1k_tokens=Decimal("1.0"),
            daily_budget=Decimal("3.0"),
        ),
        escalation_triggers=frozenset(
            {EscalationTrigger.UNCLEAR_TASK, EscalationTrigger.SAFETY_CONCERN},
        ),
        active=False,
    ),
)


def default_registry() -> AgentRegistry:
    return AgentRegistry(DEFAULT_AGENTS)


def load_registry(path: Path | None) -> AgentRegistry:
    """Build a registry from a JSON catalogue, or the built-in one when ``path`` is None.

    Format::

        {"agents": [{"id": "garion", "display_name": "Garion", "role": "...",
                     "capabilities": ["read_files"],
                     "cost_profile": {"estimated_cost_per_1k_tokens": "3.0",
                                      "daily_budget": "10"},
                     "escalation_triggers": [], "is_controller": true}]}
    """

    if path is None:
        return default_registry()
    try:
        payload = json.loads(path.read_text("utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        raise RegistryError(f"Cannot read agent catalogue {path}: {error}") from error
    entries = payload.get("agents") if isinstance(payload, dict) else None
    if not isinstance(entries, list):
        raise RegistryError(f"Agent catalogue {path} must contain an 'agents' list.")
    return AgentRegistry(_parse_definition(entry) for entry in entries)


def _parse_definition(entry: Any) -> AgentDefinition:
    if not isinstance(entry, dict):
        raise RegistryError(f"Agent entry must be an object, got {type(entry).__name__}")
    agent_id = str(entry.get("id", "")).strip()
    try:
        capabilities = frozenset(Capability(value) for value in entry.get("capabilities", []))
        triggers = frozenset(
            EscalationTrigger(value) for value in entry.get("escalation_triggers", [])
        )
    except ValueError as error:
        raise RegistryError(f"Agent {agent_id!r}: {error}") from error

    cost = entry.get("cost_profile") or {}
    try:
        cost_profile = CostProfile(
            estimated_cost_per_1k_tokens=Decimal(str(cost["estimated_cost_per_1k_tokens"])),
            daily_budget=Decimal(str(cost["daily_budget"])),
        )
    except (KeyError, InvalidOperation) as error:
        raise RegistryError(f"Agent {agent_id!r}: invalid cost_profile ({error})") from error

    model_raw = entry.get("model")
    model = (
        ModelSettings(
            provider=str(model_raw.get("provider", "")),
            model=str(model_raw.get("model", "")),
            temperature=float(model_raw.get("temperature", 0.7)),
            max_tokens=int(model_raw.get("max_tokens", 4096)),
        )
        if isinstance(model_raw, dict)
        else None
    )
    return AgentDefinition(
        id=agent_id,
        display_name=str(entry.get("display_name") or agent_id),
        role=str(entry.get("role", "")),
        capabilities=capabilities,
        cost_profile=cost_profile,
        escalation_triggers=triggers,
        is_controller=bool(entry.get("is_controller", False)),
        title=str(entry.get("title", "")),
        description=str(entry.get("description", "")),
        personality=str(entry.get("personality", "")),
        model=model,
        active=bool(entry.get("active", True)),
    )
