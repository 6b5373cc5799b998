"""OpenAI Codex CLI adapter."""

from __future__ import annotations

from agent_dispatch.orchestrator.backend.cli_backend import CliBackendAdapter
from agent_dispatch.orchestrator.models import BackendType, ExecutionRequest


class CodexAdapter(CliBackendAdapter):
    """``codex exec``; a prompt of ``-`` makes codex read it from stdin."""

    backend = BackendType.CODEX
    credential_env_var = "OPENAI_API_KEY"
    fatal_stderr_markers = (
        "Error:",
        "Failed:",
        "Exception:",
        "Fatal:",
        "API error",
        "Rate limit",
        "Quota exceeded",
        "Authentication failed",
    )

    def build_argv(self, request: ExecutionRequest, prompt: str | None) -> list[str]:
        argv = [*self.command, "exec"]
        model = request.model or self.model
        if model:
            argv.extend(["--model", model])
        argv.append(prompt if prompt is not None else "-")
        return argv
