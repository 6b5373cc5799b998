"""Prefect flow for dispatching many tasks through one dispatcher.

Each description becomes a Prefect task run on the flow's thread pool, so
dispatches execute concurrently while sharing quota pools and the ledger.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from prefect import flow, task
from prefect.cache_policies import NONE

from agent_dispatch.orchestrator.dispatcher import DispatchOutcome, Dispatcher
from agent_dispatch.orchestrator.models import ClassificationHints, OutputFormat

logger = logging.getLogger(__name__)


@task(name="dispatch-task", cache_policy=NONE)
def dispatch_task(  # noqa: PLR0913
    dispatcher: Dispatcher,
    description: str,
    hints: ClassificationHints | None = None,
    working_dir: Path | None = None,
    timeout_seconds: float | None = None,
    output_format: OutputFormat | None = None,
) -> DispatchOutcome:
    """Dispatch one description; failures come back inside the outcome."""

    return dispatcher.dispatch(
        description,
        hints,
        working_dir=working_dir,
        timeout_seconds=timeout_seconds,
        output_format=output_format,
    )


@flow(name="dispatch-batch", validate_parameters=False)
def dispatch_batch(  # noqa: PLR0913
    dispatcher: Dispatcher,
    descriptions: Sequence[str],
    *,
    hints: ClassificationHints | None = None,
    working_dir: Path | None = None,
    timeout_seconds: float | None = None,
    output_format: OutputFormat | None = None,
) -> list[DispatchOutcome]:
    """Dispatch every description concurrently; outcomes keep the input order."""

    logger.info("Dispatching batch of %s task(s)", len(descriptions))
    futures = [
        dispatch_task.submit(
            dispatcher,
            description,
            hints,
            working_dir,
            timeout_seconds,
            output_format,
        )
        for description in descriptions
    ]
    outcomes = [future.result() for future in futures]
    succeeded = sum(1 for outcome in outcomes if outcome.result.success)
    logger.info("Batch finished: %s/%s succeeded", succeeded, len(outcomes))
    return outcomes
