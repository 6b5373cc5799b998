"""Runtime configuration for the dispatcher and its CLI backends."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from agent_dispatch.orchestrator.models import BackendType, OutputFormat, QuotaUnit
from agent_dispatch.orchestrator.pricing import ModelPricing, parse_pricing_mapping

_PREFIX = "AGENT_DISPATCH_"

EnumT = TypeVar("EnumT", OutputFormat, BackendType, QuotaUnit)


@dataclass(slots=True)
class BackendSettings:
    """Per-backend command, limits and cost model."""

    command: tuple[str, ...]
    model: str | None = None
    timeout_seconds: float = 300.0
    quota_limit: int = 1000
    quota_reset_hours: float = 24.0
    quota_unit: QuotaUnit = QuotaUnit.REQUESTS
    metered: bool = False
    enabled: bool = True


def default_backend_settings() -> dict[BackendType, BackendSettings]:
    """Limits of the stock subscription tiers each CLI ships with."""

    return {
        BackendType.CLAUDE: BackendSettings(
            command=("claude",),
            timeout_seconds=300.0,
            quota_limit=1000,
            quota_reset_hours=24.0,
        ),
        BackendType.CODEX: BackendSettings(
            command=("codex",),
            timeout_seconds=240.0,
            quota_limit=150,
            quota_reset_hours=5.0,
        ),
        BackendType.GEMINI: BackendSettings(
            command=("gemini",),
            model="gemini-2.5-flash",
            timeout_seconds=180.0,
            quota_limit=1_000_000,
            quota_reset_hours=24.0,
            quota_unit=QuotaUnit.TOKENS,
        ),
    }


@dataclass(slots=True)
class DispatchSettings:
    """Execution policy shared by every backend."""

    prompt_argv_max_bytes: int = 8192
    kill_grace_seconds: float = 5.0
    poll_interval_seconds: float = 0.1
    output_format: OutputFormat = OutputFormat.TEXT
    security_backend: BackendType = BackendType.CLAUDE
    default_backend: BackendType = BackendType.CLAUDE


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".agent_dispatch.db")
    sqlite_busy_timeout_ms: int = 5000
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)
    backends: dict[BackendType, BackendSettings] = field(default_factory=default_backend_settings)
    pricing: dict[tuple[str, str], ModelPricing] = field(default_factory=dict)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from ``AGENT_DISPATCH_*`` variables over the built-in defaults."""

        backends = default_backend_settings()
        for backend, defaults in backends.items():
            backends[backend] = _backend_from_env(backend, defaults)

        return cls(
            db_path=db_path or Path(os.getenv(f"{_PREFIX}DB_PATH", ".agent_dispatch.db")),
            sqlite_busy_timeout_ms=_env_int("SQLITE_BUSY_TIMEOUT_MS", 5000),
            dispatch=DispatchSettings(
                prompt_argv_max_bytes=_env_int("PROMPT_ARGV_MAX_BYTES", 8192),
                kill_grace_seconds=_env_float("KILL_GRACE_SECONDS", 5.0),
                poll_interval_seconds=_env_float("POLL_INTERVAL_SECONDS", 0.1),
                output_format=_env_enum("OUTPUT_FORMAT", OutputFormat, OutputFormat.TEXT),
                security_backend=_env_enum(
                    "SECURITY_BACKEND",
                    BackendType,
                    BackendType.CLAUDE,
                ),
                default_backend=_env_enum("DEFAULT_BACKEND", BackendType, BackendType.CLAUDE),
            ),
            backends=backends,
            pricing=parse_pricing_mapping(os.getenv(f"{_PREFIX}PRICING", "")),
        )

    @property
    def enabled_backends(self) -> tuple[BackendType, ...]:
        return tuple(backend for backend, item in self.backends.items() if item.enabled)

    def validate(self) -> None:
        """Raise configuration error on values the dispatcher cannot run with."""

        if self.dispatch.prompt_argv_max_bytes <= 0:
            raise ValueError(f"{_PREFIX}PROMPT_ARGV_MAX_BYTES must be > 0.")
        if self.dispatch.kill_grace_seconds < 0:
            raise ValueError(f"{_PREFIX}KILL_GRACE_SECONDS must be >= 0.")
        if self.dispatch.poll_interval_seconds <= 0:
            raise ValueError(f"{_PREFIX}POLL_INTERVAL_SECONDS must be > 0.")
        if not self.enabled_backends:
            raise ValueError("At least one backend must be enabled.")
        for name, backend in (
            ("SECURITY_BACKEND", self.dispatch.security_backend),
            ("DEFAULT_BACKEND", self.dispatch.default_backend),
        ):
            if backend not in self.enabled_backends:
                raise ValueError(f"{_PREFIX}{name}={backend.value} is not an enabled backend.")
        for backend, item in self.backends.items():
            key = f"{_PREFIX}{backend.value.upper()}"
            if not item.command:
                raise ValueError(f"{key}_COMMAND must not be empty.")
            if item.timeout_seconds <= 0:
                raise ValueError(f"{key}_TIMEOUT_SECONDS must be > 0.")
            if item.quota_limit <= 0:
                raise ValueError(f"{key}_QUOTA_LIMIT must be > 0.")
            if item.quota_reset_hours <= 0:
                raise ValueError(f"{key}_QUOTA_RESET_HOURS must be > 0.")


def _backend_from_env(backend: BackendType, defaults: BackendSettings) -> BackendSettings:
    name = backend.value.upper()
    raw_command = os.getenv(f"{_PREFIX}{name}_COMMAND")
    command = tuple(shlex.split(raw_command)) if raw_command is not None else defaults.command
    return BackendSettings(
        command=command,
        model=os.getenv(f"{_PREFIX}{name}_MODEL", defaults.model or "") or None,
        timeout_seconds=_env_float(f"{name}_TIMEOUT_SECONDS", defaults.timeout_seconds),
        quota_limit=_env_int(f"{name}_QUOTA_LIMIT", defaults.quota_limit),
        quota_reset_hours=_env_float(f"{name}_QUOTA_RESET_HOURS", defaults.quota_reset_hours),
        quota_unit=_env_enum(f"{name}_QUOTA_UNIT", QuotaUnit, defaults.quota_unit),
        metered=_env_bool(f"{_PREFIX}{name}_METERED", default=defaults.metered),
        enabled=_env_bool(f"{_PREFIX}{name}_ENABLED", default=defaults.enabled),
    )


def _env_int(suffix: str, default: int) -> int:
    name = f"{_PREFIX}{suffix}"
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(suffix: str, default: float) -> float:
    name = f"{_PREFIX}{suffix}"
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error


def _env_enum(suffix: str, enum_type: type[EnumT], default: EnumT) -> EnumT:
    name = f"{_PREFIX}{suffix}"
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return enum_type(value.strip().lower())
    except ValueError as error:
        allowed = ", ".join(item.value for item in enum_type)
        raise ValueError(f"Invalid value for {name}: {value!r} (expected one of {allowed})") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
