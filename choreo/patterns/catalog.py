"""Static catalog of the collaboration patterns ("positions") on offer."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from choreo.core.models import Category


@dataclass(frozen=True)
class PositionEntry:
    name: str
    path: str
    description: str
    agents: int
    category: Category
    coordinator: Optional[str] = None


def _entry(name: str, path: str, description: str, agents: int, category: Category, **extra) -> PositionEntry:
    return PositionEntry(name=name, path=path, description=description, agents=agents, category=category, **extra)


POSITIONS: Dict[str, PositionEntry] = {
    entry.name: entry
    for entry in (
        _entry("contemplator", "positions/solo/contemplator", "Single agent deep-diving into on-chain data", 1, Category.SOLO),
        _entry("wanderer", "positions/solo/wanderer", "Exploratory agent scanning for opportunities", 1, Category.SOLO),
        _entry("mirror", "positions/duet/mirror", "Two agents auditing each other's findings", 2, Category.DUET),
        _entry("relay", "positions/duet/relay", "Sequential handoff (research -> execute -> verify)", 2, Category.DUET),
        _entry("dance", "positions/duet/dance", "Alternating negotiation between agents", 2, Category.DUET),
        _entry("embrace", "positions/duet/embrace", "Two agents sharing a wallet, coordinating moves", 2, Category.DUET),
        _entry("circle", "positions/group/circle", "Round-robin consensus on strategy", 3, Category.GROUP),
        _entry(
            "pyramid",
            "positions/group/pyramid",
            "Oracle at the top, workers executing below",
            4,
            Category.GROUP,
            coordinator="Oracle",
        ),
        _entry("swarm", "positions/group/swarm", "Parallel agents scanning multiple protocols", 5, Category.GROUP),
        _entry("tantric", "positions/group/tantric", "Slow, deliberate multi-agent consensus", 3, Category.GROUP),
        _entry("arbitrageur", "crypto/arbitrageur", "Agents spotting and executing arbitrage opportunities", 2, Category.CRYPTO),
        _entry("oracle-choir", "crypto/oracle-choir", "Multiple agents providing price feeds", 3, Category.CRYPTO),
        _entry("liquidity-lotus", "crypto/liquidity-lotus", "Coordinated liquidity management across pools", 2, Category.CRYPTO),
        _entry("dao-dance", "crypto/dao-dance", "Research, position and vote on governance proposals", 3, Category.CRYPTO),
        _entry("pattern-doctor", "healing/pattern-doctor", "Diagnose and repair failing collaborations", 1, Category.HEALING),
        _entry("recovery", "healing/recovery", "Recover state after a failed collaboration", 1, Category.HEALING),
    )
}
