"""Claude Code CLI adapter."""

from __future__ import annotations

import json

from agent_dispatch.orchestrator.backend.cli_backend import CliBackendAdapter
from agent_dispatch.orchestrator.models import BackendType, ExecutionRequest


class ClaudeAdapter(CliBackendAdapter):
    """``claude -p`` in non-interactive mode with the JSON result envelope."""

    backend = BackendType.CLAUDE
    credential_env_var = "ANTHROPIC_API_KEY"
    envelope_key = "result"

    def build_argv(self, request: ExecutionRequest, prompt: str | None) -> list[str]:
        # The envelope carries token usage, so JSON is requested regardless of output format.
        argv = [*self.command, "-p", "--output-format", "json"]
        model = request.model or self.model
        if model:
            argv.extend(["--model", model])
        if prompt is not None:
            argv.append(prompt)
        return argv

    def reported_error(self, stdout: str, stderr: str) -> str | None:
        try:
            envelope = json.loads(stdout.strip())
        except json.JSONDecodeError:
            envelope = None
        if isinstance(envelope, dict) and envelope.get("is_error"):
            return str(envelope.get("result") or envelope.get("subtype") or "is_error")
        return super().reported_error(stdout, stderr)
