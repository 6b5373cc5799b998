"""Gemini CLI adapter."""

from __future__ import annotations

from agent_dispatch.orchestrator.backend.cli_backend import CliBackendAdapter
from agent_dispatch.orchestrator.models import BackendType, ExecutionRequest

# gcloud application-default credentials take precedence over an API key in the CLI.
_GCLOUD_ENV_VARS = ("GOOGLE_APPLICATION_CREDENTIALS", "CLOUDSDK_CONFIG")


class GeminiAdapter(CliBackendAdapter):
    """``gemini --prompt`` with the JSON output envelope; without a prompt it reads stdin."""

    backend = BackendType.GEMINI
    credential_env_var = "GEMINI_API_KEY"
    envelope_key = "response"
    fatal_stderr_markers = (
        "Error:",
        "Failed:",
        "Exception:",
        "API error",
        "Rate limit",
        "Quota exceeded",
    )

    def build_argv(self, request: ExecutionRequest, prompt: str | None) -> list[str]:
        argv = [*self.command, "--output-format", "json"]
        model = request.model or self.model
        if model:
            argv.extend(["--model", model])
        if prompt is not None:
            argv.extend(["--prompt", prompt])
        return argv

    def build_env(self, request: ExecutionRequest) -> dict[str, str]:
        env = super().build_env(request)
        if env.get("GEMINI_API_KEY") or env.get("GOOGLE_API_KEY"):
            for name in _GCLOUD_ENV_VARS:
                env.pop(name, None)
            env["CLOUDSDK_ACTIVE_CONFIG_NAME"] = "nonexistent-to-disable-gcloud"
        return env
