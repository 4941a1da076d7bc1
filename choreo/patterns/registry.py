"""Pattern registry resolving catalog names into parsed, cached patterns."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple, Union

from choreo.core.errors import UnknownPattern
from choreo.core.models import Category, Pattern, ProtocolEntry, Role, Topology

from .catalog import POSITIONS, PositionEntry
from .defaults import HIERARCHICAL_PROTOCOL
from .parser import parse_skill

logger = logging.getLogger(__name__)

SOURCE_FILENAME = "SKILL.md"

# Role names treated as the coordinating role when the catalog names none.
COORDINATOR_ROLE_NAMES = ("Oracle", "Coordinator")


def resolve_topology(category: Category, roles: Tuple[Role, ...], coordinator: Optional[str]) -> Topology:
    if len(roles) <= 1:
        return Topology.SOLO
    if coordinator is not None:
        return Topology.HIERARCHICAL
    if category is Category.DUET or len(roles) == 2:
        return Topology.DUET
    return Topology.ROUND_ROBIN


class PatternRegistry:
    """Catalog of patterns, parsed lazily from their source documents."""

    def __init__(
        self,
        skills_path: Union[str, Path, None] = None,
        catalog: Optional[Mapping[str, PositionEntry]] = None,
    ) -> None:
        self._skills_path = Path(skills_path) if skills_path is not None else None
        self._catalog: Dict[str, PositionEntry] = dict(catalog if catalog is not None else POSITIONS)
        self._inline_sources: Dict[str, str] = {}
        self._cache: Dict[str, Pattern] = {}

    def resolve(self, name: str) -> Pattern:
        """Return the pattern for ``name``; raises ``UnknownPattern`` if absent."""
        cached = self._cache.get(name)
        if cached is not None:
            return cached
        entry = self._catalog.get(name)
        if entry is None:
            raise UnknownPattern(name)
        pattern = self.load(entry, self.read_source(entry))
        self._cache[name] = pattern
        return pattern

    def load(self, entry: PositionEntry, source_text: str) -> Pattern:
        """Build a pattern from catalog metadata and its source document text."""
        document = parse_skill(entry.name, source_text)
        coordinator = self._coordinator(entry, document.roles)
        protocol = document.protocol
        topology = resolve_topology(entry.category, document.roles, coordinator)
        if topology is Topology.HIERARCHICAL:
            protocol = _merge_protocol(protocol, HIERARCHICAL_PROTOCOL)
        logger.debug(
            "Loaded pattern %s: %d roles from %s, topology %s",
            entry.name,
            len(document.roles),
            document.role_source,
            topology.value,
        )
        return Pattern(
            name=entry.name,
            title=document.title,
            description=entry.description,
            category=entry.category,
            topology=topology,
            roles=document.roles,
            phases=document.phases,
            protocol=protocol,
            overview=document.overview,
            tools_used=document.tools_used,
            philosophy=document.philosophy,
            coordinator=coordinator,
        )

    def read_source(self, entry: PositionEntry) -> str:
        """Return the entry's source document, or an empty string if unavailable."""
        if entry.name in self._inline_sources:
            return self._inline_sources[entry.name]
        path = self.source_path(entry)
        if path is None or not path.is_file():
            logger.warning("Source document for %s not found at %s, using defaults", entry.name, path)
            return ""
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read %s: %s", path, exc)
            return ""

    def source_path(self, entry: PositionEntry) -> Optional[Path]:
        if self._skills_path is None:
            return None
        return self._skills_path / entry.path / SOURCE_FILENAME

    def source_exists(self, entry: PositionEntry) -> bool:
        if entry.name in self._inline_sources:
            return True
        path = self.source_path(entry)
        return path is not None and path.is_file()

    def register(self, entry: PositionEntry, source_text: Optional[str] = None) -> None:
        """Add or replace a catalog entry, optionally with an inline source document."""
        self._catalog[entry.name] = entry
        if source_text is not None:
            self._inline_sources[entry.name] = source_text
        self._cache.pop(entry.name, None)

    def entries(self, category: Optional[Category] = None) -> List[PositionEntry]:
        return [e for e in self._catalog.values() if category is None or e.category is category]

    def entry(self, name: str) -> PositionEntry:
        if name not in self._catalog:
            raise UnknownPattern(name)
        return self._catalog[name]

    def clear_cache(self) -> None:
        self._cache.clear()

    @staticmethod
    def _coordinator(entry: PositionEntry, roles: Tuple[Role, ...]) -> Optional[str]:
        names = [role.name for role in roles]
        if len(names) < 2:
            return None
        if entry.coordinator is not None:
            return entry.coordinator if entry.coordinator in names else None
        if entry.category is Category.GROUP:
            for candidate in COORDINATOR_ROLE_NAMES:
                if candidate in names:
                    return candidate
        return None


def _merge_protocol(
    protocol: Tuple[ProtocolEntry, ...], extra: Tuple[ProtocolEntry, ...]
) -> Tuple[ProtocolEntry, ...]:
    known = {entry.type for entry in protocol}
    return protocol + tuple(entry for entry in extra if entry.type not in known)
