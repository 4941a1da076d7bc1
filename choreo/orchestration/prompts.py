"""Prompt text handed to actors: the instruction preamble and per-turn inputs."""
from __future__ import annotations

import json
from typing import TYPE_CHECKING, Iterable, List, Sequence

from choreo.core.models import AgentMessage, Role, ToolSpec

from .builtins import BUILTIN_TOOL_NAMES, EVENTS_EMIT, SESSIONS_SEND

if TYPE_CHECKING:
    from choreo.agents.base import AgentActor

    from .session import Session

CONTINUE_PROMPT = (
    "Continue with the next phase of your work. If you have completed all phases, "
    "send a COMPLETE message and summarize your findings."
)
IDLE_TURN_PROMPT = (
    "No new messages. Continue your work, or if your part of the workflow is finished, "
    "send a COMPLETE message and summarize your findings."
)

GUIDELINES = (
    "**Stay in character** as {role}, embody your personality",
    "**Follow the workflow** phases in order",
    f"**Communicate** with other agents using `{SESSIONS_SEND}` and the message types above",
    f"**Report progress** using `{EVENTS_EMIT}` so observers see your activity",
    "**Be autonomous**: make decisions and take actions within your role",
    "**Coordinate** with other agents and wait for their responses when needed",
    "**Complete your responsibilities** before sending a COMPLETE message",
)


def build_system_prompt(role: Role, session: Session, tools: Sequence[ToolSpec]) -> str:
    """Instruction preamble fixed for the actor's lifetime."""
    pattern = session.pattern
    config = session.config

    others = ", ".join(f"{r.name} ({r.mandate})" for r in pattern.roles if r.name != role.name)
    responsibilities = "\n".join(f"- {r}" for r in role.responsibilities) or "- Execute your role in the collaboration"
    protocol = "\n".join(f"- {entry.type}: {entry.description}" for entry in pattern.protocol)

    sections: List[str] = [
        f'You are **{role.name}**, an agent participating in a "{pattern.title}" collaboration.',
        f"## Your Role\n{role.mandate}",
    ]
    if role.disposition:
        sections.append(f"## Your Personality\n{role.disposition}")
    sections.append(f"## Your Responsibilities\n{responsibilities}")

    current = [
        f"- Session ID: {session.session_id}",
        f"- Position: {pattern.name} ({pattern.title})",
        f"- Category: {pattern.category.value}",
    ]
    if pattern.coordinator:
        current.append(f"- Coordinator: {pattern.coordinator}")
    sections.append("## Current Session\n" + "\n".join(current))
    if config.target:
        sections.append(f"## Target\n{config.target}")
    if config.network is not None:
        sections.append(f"## Network\nUsing {config.network.value}")

    sections.append(f"## Other Agents in This Session\n{others or 'You are working solo in this position.'}")
    sections.append(f"## Workflow\n{_format_workflow(session)}")
    sections.append(
        "## Communication Protocol\n"
        f"Use `{SESSIONS_SEND}` to communicate with other agents.\nValid message types:\n{protocol}"
    )
    sections.append(f"## Available Tools\n{_format_tools(tools)}")
    sections.append(
        "## Guidelines\n"
        + "\n".join(f"{i}. {line.format(role=role.name)}" for i, line in enumerate(GUIDELINES, 1))
    )
    if pattern.philosophy:
        sections.append(f"## Philosophy\n{pattern.philosophy}")
    return "\n\n".join(sections)


def build_initial_prompt(session: Session, actor: AgentActor) -> str:
    pattern = session.pattern
    lines = [f'The "{pattern.title}" collaboration has begun.', ""]
    lines.append(f"You are {actor.role.name}. Your role: {actor.role.mandate}.")
    if session.config.target:
        lines.extend(["", f"**Target**: {session.config.target}"])
    lines.extend(["", f"Begin your work according to the workflow. Use `{EVENTS_EMIT}` to report your progress."])
    others = [a for a in session.agents.values() if a.agent_id != actor.agent_id]
    if others:
        lines.append(f"Coordinate with other agents using `{SESSIONS_SEND}`.")
        lines.extend(["", "Other agents in this session:"])
        lines.extend(f"- {other.role.name} ({other.agent_id})" for other in others)
    lines.extend(["", "Acknowledge your role and begin Phase 1 of the workflow."])
    return "\n".join(lines)


def build_continuation_prompt(messages: Iterable[AgentMessage]) -> str:
    """Solo follow-up input: drained messages in detail, otherwise a nudge to finish."""
    messages = list(messages)
    if not messages:
        return CONTINUE_PROMPT
    parts = ["You have received messages from other agents:", ""]
    for message in messages:
        parts.append(f"**From {message.sender_id}** ({message.type}):")
        parts.append(json.dumps(message.payload, indent=2, default=str))
        parts.append("")
    parts.append("Process these messages and continue your work.")
    return "\n".join(parts)


def build_turn_prompt(messages: Iterable[AgentMessage]) -> str:
    """Multi-actor round input built from the actor's drained queue."""
    messages = list(messages)
    if not messages:
        return IDLE_TURN_PROMPT
    lines = ["Messages received:", ""]
    lines.extend(
        f"[{m.type}] From {m.sender_id}: {json.dumps(m.payload, default=str)}" for m in messages
    )
    lines.extend(["", "Respond appropriately and continue your work."])
    return "\n".join(lines)


def _format_workflow(session: Session) -> str:
    blocks = []
    for i, phase in enumerate(session.pattern.phases, 1):
        if phase.steps:
            steps = "\n".join(f"   {j}. {step}" for j, step in enumerate(phase.steps, 1))
        else:
            steps = f"   - {phase.description}"
        blocks.append(f"{i}. **{phase.name}**:\n{steps}")
    return "\n".join(blocks)


def _format_tools(tools: Sequence[ToolSpec]) -> str:
    builtin = [t for t in tools if t.name in BUILTIN_TOOL_NAMES]
    external = [t for t in tools if t.name not in BUILTIN_TOOL_NAMES]
    lines = ["### Communication"]
    lines.extend(f"- `{t.name}` - {t.description}" for t in builtin)
    if external:
        lines.extend(["", "### Domain"])
        for t in external:
            marker = " (side-effecting, USE WITH CAUTION)" if t.side_effecting else ""
            lines.append(f"- `{t.name}` - {t.description}{marker}")
    return "\n".join(lines)
