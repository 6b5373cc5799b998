"""CLI agent adapters."""

from agent_dispatch.orchestrator.backend.base import BackendAdapter, ProcessRun, RunState
from agent_dispatch.orchestrator.backend.claude import ClaudeAdapter
from agent_dispatch.orchestrator.backend.cli_backend import (
    BackendRunError,
    CliBackendAdapter,
    run_agent_process,
)
from agent_dispatch.orchestrator.backend.codex import CodexAdapter
from agent_dispatch.orchestrator.backend.gemini import GeminiAdapter

__all__ = [
    "BackendAdapter",
    "BackendRunError",
    "ClaudeAdapter",
    "CliBackendAdapter",
    "CodexAdapter",
    "GeminiAdapter",
    "ProcessRun",
    "RunState",
    "run_agent_process",
]
