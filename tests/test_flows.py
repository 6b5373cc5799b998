from __future__ import annotations

from pathlib import Path

import allure
import pytest
from click.testing import CliRunner
from prefect.testing.utilities import prefect_test_harness

from agent_dispatch.config import Settings
from agent_dispatch.main import agent_dispatch
from agent_dispatch.orchestrator.credentials import env_credential_store
from agent_dispatch.orchestrator.flows import dispatch_batch
from agent_dispatch.orchestrator.ledger import InMemoryLedger
from agent_dispatch.orchestrator.models import BackendType, OutputFormat
from agent_dispatch.orchestrator.services import build_dispatcher

pytestmark = [
    allure.epic("Dispatch"),
    allure.feature("Batch Flow"),
]


@pytest.fixture(scope="module", autouse=True)
def _prefect_harness():
    with prefect_test_harness():
        yield


def test_batch_dispatches_every_description_in_order(echo_backends: Path, tmp_path: Path) -> None:
    settings = Settings.from_env()
    ledger = InMemoryLedger()
    store = env_credential_store(settings, environ={})
    dispatcher = build_dispatcher(settings, store=store, ledger=ledger, working_dir=tmp_path)
    descriptions = [
        "write docs for the module",
        "fix bug in parser.ts null check",
        "rotate JWT signing secret",
    ]

    try:
        outcomes = dispatch_batch(
            dispatcher,
            descriptions,
            timeout_seconds=60,
            output_format=OutputFormat.JSON,
        )
    finally:
        dispatcher.quota.close()

    assert [outcome.entry.description for outcome in outcomes] == descriptions
    assert all(outcome.result.success for outcome in outcomes)
    assert outcomes[2].result.backend is BackendType.CLAUDE
    assert outcomes[0].result.output["echo"] == "write docs for the module"
    assert len(ledger.entries()) == 3


def test_batch_cli_reads_descriptions_from_file(echo_backends: Path, tmp_path: Path) -> None:
    tasks_file = tmp_path / "tasks.txt"
    tasks_file.write_text("write docs for the module\n\nadd unit tests for utils\n", "utf-8")
    runner = CliRunner()

    result = runner.invoke(
        agent_dispatch,
        ["batch", "--from-file", str(tasks_file), "--timeout", "60"],
    )

    assert result.exit_code == 0, result.output
    assert "[1] succeeded on" in result.output
    assert "[2] succeeded on" in result.output
    assert "Batch: 2/2 succeeded" in result.output

    stats = runner.invoke(agent_dispatch, ["stats"])
    assert "Dispatches: 2 (succeeded 2, success rate 100%)" in stats.output
