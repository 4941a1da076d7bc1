"""Application runtime composition helpers."""
from __future__ import annotations

from functools import lru_cache

from choreo.agents.reasoning import OpenAIReasoner, ReasoningPrimitive
from choreo.config import config
from choreo.core.events import EventEmitter, EventLog
from choreo.core.message_bus import MessageRouter
from choreo.orchestration.orchestrator import Orchestrator
from choreo.patterns.registry import PatternRegistry
from choreo.services.llm_pool import LLMPool
from choreo.services.tools import ToolRegistry


@lru_cache
def get_registry() -> PatternRegistry:
    return PatternRegistry(skills_path=config.orchestrator.skills_path)


@lru_cache
def get_router() -> MessageRouter:
    return MessageRouter(max_history=config.orchestrator.session_max_messages)


@lru_cache
def get_event_log() -> EventLog:
    return EventLog()


@lru_cache
def get_event_emitter() -> EventEmitter:
    emitter = EventEmitter()
    emitter.add_sink(get_event_log())
    return emitter


@lru_cache
def get_tool_registry() -> ToolRegistry:
    return ToolRegistry()


@lru_cache
def get_llm_pool() -> LLMPool:
    pool = LLMPool()
    if config.model is not None:
        pool.register(config.model.model, config.model)
    return pool


@lru_cache
def get_reasoner() -> ReasoningPrimitive:
    model_name = config.model.model if config.model is not None else "gpt-4o"
    return OpenAIReasoner(get_llm_pool(), model_name)


@lru_cache
def get_orchestrator() -> Orchestrator:
    return Orchestrator(
        registry=get_registry(),
        router=get_router(),
        reasoner=get_reasoner(),
        tool_registry=get_tool_registry(),
        emitter=get_event_emitter(),
        settings=config.orchestrator,
    )
