"""Subprocess-based runner shared by CLI agent adapters."""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import time
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any, ClassVar

from agent_dispatch.orchestrator.backend.base import ProcessRun, RunState
from agent_dispatch.orchestrator.failure_classifier import classify_backend_failure
from agent_dispatch.orchestrator.models import (
    AttemptOutcome,
    BackendType,
    Credential,
    ExecutionRequest,
    ExecutionResult,
    FailureClass,
    QuotaUnit,
    TokenUsage,
)
from agent_dispatch.orchestrator.output_parsing import (
    MalformedOutputError,
    parse_output,
    unwrap_envelope,
)
from agent_dispatch.orchestrator.pricing import PricingTable, estimate_cost_usd
from agent_dispatch.orchestrator.usage import estimate_tokens, resolve_usage

logger = logging.getLogger(__name__)

_STDERR_TAIL_CHARS = 500


class BackendRunError(RuntimeError):
    """Backend execution error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class CliBackendAdapter:
    """Run a CLI agent as a subprocess and turn its output into an ``ExecutionResult``.

    Subclasses describe the command line, the credential environment, and which
    stderr text means failure.  Spawning, prompt delivery, timeouts, cancellation
    and accounting live here.
    """

    backend: ClassVar[BackendType]
    credential_env_var: ClassVar[str | None] = None
    envelope_key: ClassVar[str | None] = None
    fatal_stderr_markers: ClassVar[tuple[str, ...]] = ("Error:", "Failed:", "Exception:", "Fatal:")

    def __init__(  # noqa: PLR0913
        self,
        *,
        command: Sequence[str],
        model: str | None = None,
        quota_unit: QuotaUnit = QuotaUnit.REQUESTS,
        metered: bool = False,
        pricing: PricingTable | None = None,
        prompt_argv_max_bytes: int = 8192,
        kill_grace_seconds: float = 5.0,
        poll_interval_seconds: float = 0.1,
        extra_env: Mapping[str, str] | None = None,
    ) -> None:
        if not command:
            raise ValueError(f"Empty command for backend {self.backend.value}.")
        self.command = tuple(command)
        self.model = model
        self.quota_unit = quota_unit
        self.metered = metered
        self.pricing = dict(pricing or {})
        self.prompt_argv_max_bytes = prompt_argv_max_bytes
        self.kill_grace_seconds = kill_grace_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.extra_env = dict(extra_env or {})

    def build_argv(self, request: ExecutionRequest, prompt: str | None) -> list[str]:
        """Command line for one attempt; ``prompt`` is None when it goes to stdin."""

        raise NotImplementedError

    def is_available(self) -> bool:
        executable = self.command[0]
        if os.path.sep in executable:
            return Path(executable).is_file() and os.access(executable, os.X_OK)
        return shutil.which(executable) is not None

    def estimate_quota_units(self, request: ExecutionRequest) -> int:
        if self.quota_unit is QuotaUnit.REQUESTS:
            return 1
        # Reserve for the prompt plus an equally sized answer.
        return estimate_tokens(build_prompt(request)) * 2

    def actual_quota_units(self, usage: TokenUsage) -> int:
        if self.quota_unit is QuotaUnit.REQUESTS:
            return 1
        return usage.total_tokens or 0

    def estimate_cost(self, request: ExecutionRequest, usage: TokenUsage | None = None) -> float:
        if not self.metered:
            return 0.0
        if usage is None:
            prompt_tokens = estimate_tokens(build_prompt(request))
            usage = TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=prompt_tokens,
                total_tokens=prompt_tokens * 2,
            )
        return estimate_cost_usd(
            pricing=self.pricing,
            backend=self.backend.value,
            model=request.model or self.model,
            usage=usage,
        )

    def build_env(self, request: ExecutionRequest) -> dict[str, str]:
        env = os.environ.copy()
        env.update(self.extra_env)
        if request.credential is not None:
            env.update(self.credential_env(request.credential))
        return env

    def credential_env(self, credential: Credential) -> dict[str, str]:
        if self.credential_env_var is None or not credential.secret:
            return {}
        return {self.credential_env_var: credential.secret}

    def reported_error(self, stdout: str, stderr: str) -> str | None:
        """Fatal error text the agent printed despite exiting 0, if any."""

        for line in stderr.splitlines():
            if any(marker in line for marker in self.fatal_stderr_markers):
                return line.strip()
        return None

    def extract_payload(self, stdout: str) -> str:
        if self.envelope_key is None:
            return stdout
        return unwrap_envelope(stdout.strip(), self.envelope_key)

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        prompt = build_prompt(request)
        via_stdin = (
            len(prompt.encode("utf-8")) > self.prompt_argv_max_bytes or prompt.startswith("-")
        )
        delivery = "stdin" if via_stdin else "argv"
        argv = self.build_argv(request, None if via_stdin else prompt)
        common: dict[str, Any] = {
            "credential_id": request.credential.credential_id if request.credential else None,
            "prompt_delivery": delivery,
        }

        logger.info(
            "Starting %s attempt (prompt %s chars via %s, timeout %ss)",
            self.backend.value,
            len(prompt),
            delivery,
            request.timeout_seconds,
        )
        try:
            run = run_agent_process(
                argv,
                cwd=request.working_dir,
                env=self.build_env(request),
                stdin_text=prompt if via_stdin else None,
                timeout_seconds=request.timeout_seconds,
                cancel_requested=request.cancel_requested,
                kill_grace_seconds=self.kill_grace_seconds,
                poll_interval_seconds=self.poll_interval_seconds,
            )
        except BackendRunError as error:
            logger.warning("%s failed to start: %s", self.backend.value, error)
            return ExecutionResult.failure(
                self.backend,
                AttemptOutcome.SPAWN_FAILED,
                str(error),
                failure_class=(
                    FailureClass.BACKEND_TRANSIENT
                    if error.transient
                    else FailureClass.BACKEND_NON_RETRYABLE
                ),
                **common,
            )
        return self._to_result(request, prompt, run, common)

    def _to_result(
        self,
        request: ExecutionRequest,
        prompt: str,
        run: ProcessRun,
        common: dict[str, Any],
    ) -> ExecutionResult:
        usage = resolve_usage(prompt=prompt, stdout=run.stdout, stderr=run.stderr)
        common = {
            **common,
            "raw_output": run.stdout,
            "duration_seconds": run.duration_seconds,
            "estimated_cost_usd": self.estimate_cost(request, usage),
            "quota_units": self.actual_quota_units(usage),
            "exit_code": run.exit_code,
            "usage": usage,
        }

        if run.state is RunState.TIMED_OUT:
            return ExecutionResult.failure(
                self.backend,
                AttemptOutcome.TIMED_OUT,
                f"Timed out after {request.timeout_seconds:g}s",
                **common,
            )
        if run.state is RunState.CANCELLED:
            return ExecutionResult.failure(
                self.backend,
                AttemptOutcome.CANCELLED,
                f"Cancelled after {run.duration_seconds:.1f}s",
                **common,
            )

        if run.exit_code != 0:
            classification = classify_backend_failure(
                exit_code=run.exit_code,
                stdout=run.stdout,
                stderr=run.stderr,
            )
            return ExecutionResult.failure(
                self.backend,
                AttemptOutcome.BACKEND_FAILED,
                f"{self.backend.value} exited with code {run.exit_code}: "
                f"{_tail(run.stderr) or _tail(run.stdout) or 'no output'}",
                failure_class=classification.failure_class,
                **common,
            )

        fatal = self.reported_error(run.stdout, run.stderr)
        if fatal is not None:
            classification = classify_backend_failure(
                exit_code=run.exit_code,
                stdout=run.stdout,
                stderr=run.stderr,
            )
            return ExecutionResult.failure(
                self.backend,
                AttemptOutcome.BACKEND_FAILED,
                f"{self.backend.value} reported an error: {fatal}",
                failure_class=classification.failure_class,
                **common,
            )

        try:
            output = parse_output(self.extract_payload(run.stdout), request.output_format)
        except MalformedOutputError as error:
            return ExecutionResult.failure(
                self.backend,
                AttemptOutcome.MALFORMED_OUTPUT,
                str(error),
                **common,
            )
        return ExecutionResult(
            success=True,
            backend=self.backend,
            outcome=AttemptOutcome.SUCCEEDED,
            output=output,
            **common,
        )


def build_prompt(request: ExecutionRequest) -> str:
    """Task prompt with the context file list appended."""

    if not request.context_files:
        return request.prompt
    listing = "\n".join(f"- {path}" for path in request.context_files)
    return f"{request.prompt}\n\nContext files:\n{listing}\n"


def run_agent_process(  # noqa: PLR0913
    argv: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str],
    stdin_text: str | None,
    timeout_seconds: float,
    cancel_requested: Callable[[], bool] | None = None,
    kill_grace_seconds: float = 5.0,
    poll_interval_seconds: float = 0.1,
) -> ProcessRun:
    """Run ``argv`` in its own process group, feeding ``stdin_text`` if given.

    On timeout or cancellation the whole group is terminated, so helpers the
    agent spawned do not outlive it.  Raises ``BackendRunError`` only when the
    process cannot be started.
    """

    started = time.monotonic()
    try:
        process = subprocess.Popen(  # noqa: S603
            list(argv),
            cwd=cwd,
            env=dict(env),
            stdin=subprocess.PIPE if stdin_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            **_process_group_kwargs(),
        )
    except FileNotFoundError as error:
        raise BackendRunError(
            f"CLI backend command not found: {argv[0]}",
            transient=False,
        ) from error
    except OSError as error:
        raise BackendRunError(f"CLI backend failed to start: {error}", transient=True) from error

    deadline = started + timeout_seconds
    pending_input = stdin_text
    while True:
        try:
            stdout, stderr = process.communicate(
                input=pending_input,
                timeout=poll_interval_seconds,
            )
        except subprocess.TimeoutExpired:
            pending_input = None
        else:
            return ProcessRun(
                state=RunState.COMPLETED,
                exit_code=process.returncode,
                stdout=stdout,
                stderr=stderr,
                duration_seconds=time.monotonic() - started,
            )

        if time.monotonic() >= deadline:
            state = RunState.TIMED_OUT
        elif cancel_requested is not None and cancel_requested():
            state = RunState.CANCELLED
        else:
            continue

        logger.warning(
            "Stopping agent process %s (%s)",
            process.pid,
            state.value.replace("_", " "),
        )
        _terminate_process_group(process, grace_seconds=kill_grace_seconds)
        stdout, stderr = _drain(process, timeout_seconds=max(kill_grace_seconds, 1.0))
        return ProcessRun(
            state=state,
            exit_code=process.returncode,
            stdout=stdout,
            stderr=stderr,
            duration_seconds=time.monotonic() - started,
        )


def _process_group_kwargs() -> dict[str, Any]:
    if os.name == "nt":
        return {"creationflags": getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)}
    return {"start_new_session": True}


def _terminate_process_group(process: subprocess.Popen[str], *, grace_seconds: float) -> None:
    if os.name == "nt":
        _terminate_process(process, grace_seconds=grace_seconds)
        return

    # start_new_session makes the child a group leader, so its pid is the group id.
    pgid = process.pid
    try:
        os.killpg(pgid, signal.SIGTERM)
    except ProcessLookupError:
        return
    except OSError as error:
        logger.warning(
            "Could not signal process group %s (%s); killing the agent process only",
            pgid,
            error,
        )
        _terminate_process(process, grace_seconds=grace_seconds)
        return

    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        pass
    # Children that ignored SIGTERM or outlived the leader.
    try:
        os.killpg(pgid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except OSError as error:
        logger.warning("Could not SIGKILL process group %s: %s", pgid, error)
        _terminate_process(process, grace_seconds=0)


def _terminate_process(process: subprocess.Popen[str], *, grace_seconds: float) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)


def _drain(process: subprocess.Popen[str], *, timeout_seconds: float) -> tuple[str, str]:
    try:
        return process.communicate(timeout=timeout_seconds)
    except subprocess.TimeoutExpired:
        logger.warning("Agent process %s left its output pipes open; discarding output", process.pid)
    for stream in (process.stdout, process.stderr):
        if stream is not None:
            stream.close()
    process.kill()
    process.wait()
    return "", ""


def _tail(text: str) -> str:
    stripped = text.strip()
    if len(stripped) <= _STDERR_TAIL_CHARS:
        return stripped
    return "..." + stripped[-_STDERR_TAIL_CHARS:]
