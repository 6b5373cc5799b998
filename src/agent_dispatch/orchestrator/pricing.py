"""Token cost estimation for metered backends."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from agent_dispatch.orchestrator.models import TokenUsage


@dataclass(slots=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float


PricingTable = Mapping[tuple[str, str], ModelPricing]


def estimate_cost_usd(
    *,
    pricing: PricingTable,
    backend: str,
    model: str | None,
    usage: TokenUsage,
) -> float:
    """Estimate attempt cost in USD; unknown pricing or usage costs nothing."""

    rate = lookup_pricing(pricing, backend=backend, model=model or "*")
    if rate is None:
        return 0.0

    if usage.prompt_tokens is not None and usage.completion_tokens is not None:
        return (
            (usage.prompt_tokens / 1_000_000) * rate.input_per_1m
            + (usage.completion_tokens / 1_000_000) * rate.output_per_1m
        )
    if usage.total_tokens is not None:
        return (usage.total_tokens / 1_000_000) * rate.input_per_1m
    return 0.0


def lookup_pricing(pricing: PricingTable, *, backend: str, model: str) -> ModelPricing | None:
    key = backend.strip().lower()
    for candidate in ((key, model.strip()), (key, "*"), ("*", "*")):
        rate = pricing.get(candidate)
        if rate is not None:
            return rate
    return None


def parse_pricing_mapping(raw: str) -> dict[tuple[str, str], ModelPricing]:
    """Parse ``AGENT_DISPATCH_PRICING``.

    Format:
    - `backend:model:input_per_1m:output_per_1m`
    - multiple entries separated by `,`
    - `*` is a wildcard for backend or model
    """

    parsed: dict[tuple[str, str], ModelPricing] = {}
    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.split(":")]
        if len(parts) != 4:
            raise ValueError(
                f"Invalid AGENT_DISPATCH_PRICING entry: {value!r}. "
                "Expected format 'backend:model:input_per_1m:output_per_1m'.",
            )
        backend, model, input_price, output_price = parts
        try:
            rate = ModelPricing(input_per_1m=float(input_price), output_per_1m=float(output_price))
        except ValueError as error:
            raise ValueError(f"Invalid AGENT_DISPATCH_PRICING price in {value!r}") from error
        parsed[(backend.lower(), model)] = rate
    return parsed
