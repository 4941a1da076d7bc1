"""Best-effort parser for the markdown documents that describe a pattern.

Source documents are written by people and are often loosely structured, so
every extractor degrades to a default instead of raising. Role extraction is a
fallback chain: markdown table, then ``###`` subsections, then the built-in
roles for the pattern name, then a single generic role.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from choreo.core.models import ProtocolEntry, Role, WorkflowPhase

from .defaults import DEFAULT_PHASES, DEFAULT_PROTOCOL, default_roles

logger = logging.getLogger(__name__)

ROLE_SOURCE_TABLE = "table"
ROLE_SOURCE_SUBSECTIONS = "subsections"
ROLE_SOURCE_DEFAULTS = "defaults"

_SECTION_RE = re.compile(r"^## (.+)$")
_TITLE_RE = re.compile(r"^# (.+)$", re.MULTILINE)
_SUBSECTION_RE = re.compile(r"^### ([^\n]+)\n(.*?)(?=^### |\Z)", re.MULTILINE | re.DOTALL)
_PHASE_PREFIX_RE = re.compile(r"^Phase \d+:\s*", re.IGNORECASE)
_NUMBERED_RE = re.compile(r"^\s*\d+\.\s+(.+)$", re.MULTILINE)
_BULLET_RE = re.compile(r"^\s*[-*]\s*(.+)$", re.MULTILINE)
_PROTOCOL_BULLET_RE = re.compile(r"^\s*[-*]\s*`?([A-Z][A-Z_]+)`?\s*[-:\u2014]?\s*(.*)$")
_CODE_BLOCK_RE = re.compile(r"```.*?```", re.DOTALL)
_CODE_KEY_RE = re.compile(r'"?([A-Z][A-Z_]+)"?\s*:')
_TOOL_TICK_RE = re.compile(r"`([a-z_]+)`")
_TOOL_BULLET_RE = re.compile(r"^\s*[-*]\s*`?([a-z_]+)`?", re.MULTILINE)
_NAME_IN_PARENS_RE = re.compile(r"\(([^)]+)\)")
_FIELD_RE = r"\*\*{label}\*\*:?\s*(.+)"


@dataclass
class SkillDocument:
    """Everything extracted from one pattern source document."""

    name: str
    title: str
    overview: str
    roles: Tuple[Role, ...]
    role_source: str
    phases: Tuple[WorkflowPhase, ...]
    protocol: Tuple[ProtocolEntry, ...]
    tools_used: Tuple[str, ...] = ()
    philosophy: str = ""
    sections: Dict[str, str] = field(default_factory=dict)


def parse_skill(name: str, text: str) -> SkillDocument:
    sections = split_sections(text)
    roles, role_source = extract_roles(sections.get("agents", ""), name)
    return SkillDocument(
        name=name,
        title=extract_title(text) or name.replace("-", " ").title(),
        overview=extract_overview(sections),
        roles=roles,
        role_source=role_source,
        phases=extract_workflow(sections.get("workflow", "")),
        protocol=extract_protocol(sections),
        tools_used=extract_tools(sections),
        philosophy=extract_philosophy(sections.get("philosophy", "")),
        sections=sections,
    )


def split_sections(text: str) -> Dict[str, str]:
    """Split markdown on ``##`` headers; keys are lower-cased header text."""
    sections: Dict[str, str] = {}
    current = "intro"
    buffer: List[str] = []
    for line in text.splitlines():
        match = _SECTION_RE.match(line)
        if match:
            if buffer:
                sections[current.lower()] = "\n".join(buffer).strip()
            current = match.group(1).strip()
            buffer = []
        else:
            buffer.append(line)
    if buffer:
        sections[current.lower()] = "\n".join(buffer).strip()
    return sections


def extract_title(text: str) -> Optional[str]:
    match = _TITLE_RE.search(text)
    return match.group(1).strip() if match else None


def extract_overview(sections: Dict[str, str]) -> str:
    body = sections.get("description") or sections.get("overview") or sections.get("intro") or ""
    paragraph: List[str] = []
    for line in body.splitlines():
        if line.startswith("#") or line.startswith("```"):
            break
        paragraph.append(line)
    return "\n".join(paragraph).strip()


def extract_roles(section: str, pattern_name: str) -> Tuple[Tuple[Role, ...], str]:
    """Return the roles and which link of the fallback chain produced them."""
    roles = parse_role_table(section)
    if roles:
        return roles, ROLE_SOURCE_TABLE
    roles = parse_role_subsections(section)
    if roles:
        return roles, ROLE_SOURCE_SUBSECTIONS
    logger.debug("No parsable roles for %s, using defaults", pattern_name)
    return default_roles(pattern_name), ROLE_SOURCE_DEFAULTS


def parse_role_table(section: str) -> Tuple[Role, ...]:
    """Parse ``| Agent | Role | Personality | [Responsibilities] |`` rows."""
    rows = [line.strip() for line in section.splitlines() if line.strip().startswith("|")]
    if len(rows) < 3:
        return ()
    roles: List[Role] = []
    for row in rows[1:]:
        cells = [cell.strip() for cell in row.strip("|").split("|")]
        if all(set(cell) <= set("-: ") for cell in cells):
            continue
        if len(cells) < 3 or not cells[0]:
            continue
        responsibilities: Tuple[str, ...] = ()
        if len(cells) > 3 and cells[3]:
            responsibilities = tuple(part.strip() for part in re.split(r"[;,]", cells[3]) if part.strip())
        roles.append(
            Role(
                name=_role_name(cells[0]),
                mandate=cells[1],
                disposition=cells[2],
                responsibilities=responsibilities,
            )
        )
    return tuple(roles)


def parse_role_subsections(section: str) -> Tuple[Role, ...]:
    roles: List[Role] = []
    for match in _SUBSECTION_RE.finditer(section):
        name = _role_name(match.group(1).strip())
        body = match.group(2).strip()
        roles.append(
            Role(
                name=name,
                mandate=_field(body, "Role") or name,
                disposition=_field(body, "Personality") or "",
                responsibilities=_responsibilities(body),
            )
        )
    return tuple(roles)


def extract_workflow(section: str) -> Tuple[WorkflowPhase, ...]:
    phases: List[WorkflowPhase] = []
    for match in _SUBSECTION_RE.finditer(section):
        name = _PHASE_PREFIX_RE.sub("", match.group(1).strip())
        body = match.group(2).strip()
        steps = tuple(step.strip() for step in _NUMBERED_RE.findall(body) if step.strip())
        first_line = body.splitlines()[0].strip() if body else ""
        phases.append(WorkflowPhase(name=name, description=first_line or name, steps=steps))
    return tuple(phases) or DEFAULT_PHASES


def extract_protocol(sections: Dict[str, str]) -> Tuple[ProtocolEntry, ...]:
    section = (
        sections.get("communication protocol")
        or sections.get("communication")
        or sections.get("message types")
        or ""
    )
    entries: Dict[str, ProtocolEntry] = {}
    for line in section.splitlines():
        match = _PROTOCOL_BULLET_RE.match(line)
        if match and match.group(1) not in entries:
            entries[match.group(1)] = ProtocolEntry(match.group(1), match.group(2).strip() or match.group(1))

    if not entries:
        block = _CODE_BLOCK_RE.search(section)
        if block:
            for key in _CODE_KEY_RE.findall(block.group(0)):
                entries.setdefault(key, ProtocolEntry(key, f"Message type: {key}"))

    return tuple(entries.values()) or DEFAULT_PROTOCOL


def extract_tools(sections: Dict[str, str]) -> Tuple[str, ...]:
    section = sections.get("tools used") or sections.get("tools") or ""
    tools: List[str] = []
    for tool in _TOOL_TICK_RE.findall(section):
        if tool not in tools:
            tools.append(tool)
    for tool in _TOOL_BULLET_RE.findall(section):
        if "_" in tool and tool not in tools:
            tools.append(tool)
    return tuple(tools)


def extract_philosophy(section: str) -> str:
    quoted = re.search(r'"([^"]+)"', section)
    if quoted:
        return quoted.group(1)
    for line in section.splitlines():
        if line.strip():
            return line.strip()
    return ""


def _role_name(raw: str) -> str:
    # "Agent A (Reflector)" names the role by its parenthesised alias.
    cleaned = raw.replace("*", "").strip()
    match = _NAME_IN_PARENS_RE.search(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def _field(body: str, label: str) -> Optional[str]:
    match = re.search(_FIELD_RE.format(label=label), body)
    return match.group(1).strip() if match else None


def _responsibilities(body: str) -> Tuple[str, ...]:
    match = re.search(r"\*\*Responsibilities\*\*:?(.*?)(?=\*\*|\Z)", body, re.DOTALL)
    if not match:
        return ()
    return tuple(item.strip() for item in _BULLET_RE.findall(match.group(1)) if item.strip())
