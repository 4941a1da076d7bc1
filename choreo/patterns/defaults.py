"""Fallback content used when a pattern's source document is too loose to parse."""
from __future__ import annotations

from typing import Dict, Tuple

from choreo.core.models import MessageType, ProtocolEntry, Role, WorkflowPhase


def _role(name: str, mandate: str, disposition: str, *responsibilities: str) -> Role:
    return Role(name=name, mandate=mandate, disposition=disposition, responsibilities=tuple(responsibilities))


def _workers(prefix: str, count: int, mandate: str, disposition: str, *responsibilities: str) -> Tuple[Role, ...]:
    return tuple(_role(f"{prefix}-{i}", mandate, disposition, *responsibilities) for i in range(1, count + 1))


GENERIC_ROLE = _role(
    "Agent",
    "General Executor",
    "Capable, adaptable",
    "Execute position workflow",
    "Report results",
)

DEFAULT_ROLES: Dict[str, Tuple[Role, ...]] = {
    "contemplator": (
        _role(
            "Contemplator",
            "Primary Analyst",
            "Thorough, methodical, patient",
            "Perform deep analysis of the target",
            "Document findings with evidence",
            "Report insights as events",
        ),
    ),
    "wanderer": (
        _role(
            "Wanderer",
            "Explorer",
            "Curious, opportunistic, alert",
            "Scan for opportunities",
            "Identify patterns and trends",
            "Report discoveries",
        ),
    ),
    "mirror": (
        _role(
            "Reflector",
            "Primary Analyst",
            "Thorough, methodical, detail-oriented",
            "Perform primary analysis of target",
            "Document findings with evidence",
            "Calculate verification checksum",
        ),
        _role(
            "Verifier",
            "Independent Checker",
            "Skeptical, precise, independent",
            "Perform independent analysis",
            "Compare results with Reflector",
            "Flag discrepancies",
        ),
    ),
    "relay": (
        _role(
            "Researcher",
            "Information Gatherer",
            "Curious, thorough, organized",
            "Gather context and information",
            "Prepare research summary",
            "Hand off to Executor",
        ),
        _role(
            "Executor",
            "Action Specialist",
            "Decisive, precise, action-oriented",
            "Receive research from Researcher",
            "Execute required actions",
            "Verify and report results",
        ),
    ),
    "dance": (
        _role(
            "Leader",
            "Initiative Taker",
            "Assertive, creative, adaptable",
            "Propose actions and strategies",
            "Respond to partner's moves",
            "Drive toward resolution",
        ),
        _role(
            "Partner",
            "Counterpart",
            "Responsive, analytical, supportive",
            "Evaluate leader's proposals",
            "Suggest alternatives",
            "Maintain balance",
        ),
    ),
    "embrace": (
        _role(
            "Guardian",
            "Asset Protector",
            "Cautious, protective, strategic",
            "Monitor shared wallet state",
            "Validate partner's actions",
            "Ensure coordinated execution",
        ),
        _role(
            "Operator",
            "Transaction Handler",
            "Efficient, precise, reliable",
            "Execute transactions",
            "Report actions to Guardian",
            "Maintain sync with partner",
        ),
    ),
    "circle": (
        _role("Voice-1", "First Speaker", "Initiating, thoughtful", "Present initial analysis", "Build on others' ideas"),
        _role("Voice-2", "Second Speaker", "Questioning, analytical", "Challenge assumptions", "Add perspective"),
        _role("Voice-3", "Third Speaker", "Synthesizing, decisive", "Find common ground", "Drive to consensus"),
    ),
    "pyramid": (
        _role(
            "Oracle",
            "Strategic Director",
            "Visionary, commanding, synthesizing",
            "Decompose mission into tasks",
            "Assign work to workers",
            "Synthesize results",
            "Make final decisions",
        ),
    )
    + _workers(
        "Worker",
        3,
        "Specialist Executor",
        "Focused, efficient, reliable",
        "Execute assigned tasks",
        "Report results to Oracle",
        "Request guidance when needed",
    ),
    "swarm": _workers("Scout", 5, "Sector Monitor", "Alert, thorough, quick", "Monitor assigned sector", "Report findings"),
    "tantric": (
        _role("Breath-1", "Patient Observer", "Calm, deliberate, wise", "Observe deeply", "Share insights slowly"),
        _role("Breath-2", "Patient Observer", "Calm, deliberate, wise", "Listen fully", "Add measured perspective"),
        _role("Breath-3", "Patient Observer", "Calm, deliberate, wise", "Integrate views", "Guide to consensus"),
    ),
    "arbitrageur": (
        _role(
            "Spotter",
            "Opportunity Finder",
            "Sharp, quick, analytical",
            "Monitor price feeds",
            "Identify arbitrage opportunities",
            "Calculate profitability",
        ),
        _role(
            "Executor",
            "Trade Handler",
            "Precise, fast, reliable",
            "Execute arbitrage trades",
            "Manage timing",
            "Verify completion",
        ),
    ),
    "oracle-choir": tuple(
        _role(
            f"Voice-{letter}",
            "Price Reporter",
            "Accurate, consistent",
            "Report price observations",
            "Validate others' reports",
        )
        for letter in "ABC"
    ),
    "liquidity-lotus": (
        _role(
            "Strategist",
            "LP Planner",
            "Strategic, analytical",
            "Analyze pool conditions",
            "Plan LP positions",
            "Coordinate with Executor",
        ),
        _role(
            "Executor",
            "LP Operator",
            "Precise, careful",
            "Execute LP operations",
            "Monitor positions",
            "Report status",
        ),
    ),
    "dao-dance": (
        _role(
            "Researcher",
            "Proposal Analyst",
            "Thorough, neutral",
            "Analyze proposals",
            "Research implications",
            "Present findings",
        ),
        _role(
            "Strategist",
            "Position Former",
            "Strategic, decisive",
            "Form voting position",
            "Coordinate with team",
            "Finalize strategy",
        ),
        _role(
            "Voter",
            "Vote Executor",
            "Reliable, precise",
            "Execute votes",
            "Verify transactions",
            "Report results",
        ),
    ),
    "pattern-doctor": (
        _role(
            "Doctor",
            "Pattern Diagnostician",
            "Analytical, patient, thorough",
            "Diagnose collaboration issues",
            "Identify failure patterns",
            "Prescribe remediation",
        ),
    ),
    "recovery": (
        _role(
            "Healer",
            "Recovery Specialist",
            "Calm, systematic, resilient",
            "Handle failures gracefully",
            "Recover state",
            "Resume operations",
        ),
    ),
}

DEFAULT_PHASES: Tuple[WorkflowPhase, ...] = (
    WorkflowPhase("Initialize", "Set up and prepare"),
    WorkflowPhase("Execute", "Perform main work"),
    WorkflowPhase("Complete", "Finalize and report"),
)

DEFAULT_PROTOCOL: Tuple[ProtocolEntry, ...] = (
    ProtocolEntry(MessageType.READY_TO_SHARE.value, "Signal readiness to exchange results"),
    ProtocolEntry(MessageType.RESULTS.value, "Share results"),
    ProtocolEntry(MessageType.ACKNOWLEDGE.value, "Confirm receipt"),
    ProtocolEntry(MessageType.DISCREPANCY.value, "Flag a disagreement between results"),
    ProtocolEntry(MessageType.CONSENSUS.value, "Declare that agreement was reached"),
    ProtocolEntry(MessageType.ESCALATE.value, "Escalate an unresolved issue"),
    ProtocolEntry(MessageType.INSTRUCTION.value, "Give an instruction"),
    ProtocolEntry(MessageType.QUERY.value, "Ask a question"),
    ProtocolEntry(MessageType.RESPONSE.value, "Answer a question"),
    ProtocolEntry(MessageType.COMPLETE.value, "Signal completion"),
)

# Extra vocabulary for patterns whose coordinator assigns and collects work.
HIERARCHICAL_PROTOCOL: Tuple[ProtocolEntry, ...] = (
    ProtocolEntry(MessageType.PYRAMID_ASSIGN.value, "Coordinator assigns a task to a worker"),
    ProtocolEntry(MessageType.PYRAMID_REPORT.value, "Worker reports a task result to the coordinator"),
    ProtocolEntry(MessageType.STATUS_UPDATE.value, "Progress update"),
)


def default_roles(pattern_name: str) -> Tuple[Role, ...]:
    return DEFAULT_ROLES.get(pattern_name, (GENERIC_ROLE,))
