import json

import pytest
from click.testing import CliRunner

from shopledger.offline import cli as agent_cli
from shopledger.offline.engine import ReconciliationEngine
from shopledger.offline.store import DeviceStore


@pytest.fixture
def cache_path(tmp_path):
    return str(tmp_path / "agent.sqlite3")


@pytest.fixture
def wired_engine(monkeypatch, transport, db_session):
    """Make the CLI build its engine on the test transport."""
    monkeypatch.setattr(
        agent_cli, "_engine",
        lambda config: ReconciliationEngine.from_config(config, transport=transport),
    )


def _queue_expense(cache_path, description):
    store = DeviceStore(cache_path)
    try:
        store.queue.enqueue(
            kind="expense_create",
            method="POST",
            path="/api/finance/expenses",
            body={"amount": 15, "description": description},
        )
    finally:
        store.close()


def test_queue_list_empty(cache_path):
    result = CliRunner().invoke(agent_cli.main, ["--cache-path", cache_path, "queue", "list"])
    assert result.exit_code == 0
    assert "Queue is empty." in result.output


def test_queue_list_json(cache_path):
    _queue_expense(cache_path, "Fuel")
    result = CliRunner().invoke(agent_cli.main, ["--cache-path", cache_path, "queue", "list", "--json"])
    assert result.exit_code == 0
    actions = json.loads(result.output)
    assert [a["kind"] for a in actions] == ["expense_create"]
    assert actions[0]["body"]["description"] == "Fuel"


def test_sync_command_replays_queue(cache_path, wired_engine, client):
    _queue_expense(cache_path, "Fuel")

    result = CliRunner().invoke(agent_cli.main, ["--cache-path", cache_path, "sync"])
    assert result.exit_code == 0, result.output
    assert "Replayed 1, remaining 0." in result.output
    assert [e["description"] for e in client.get("/api/finance/expenses").get_json()] == ["Fuel"]


def test_sync_command_fails_when_unreachable(cache_path, wired_engine, transport):
    _queue_expense(cache_path, "Fuel")
    transport.offline = True

    result = CliRunner().invoke(agent_cli.main, ["--cache-path", cache_path, "sync"])
    assert result.exit_code == 1
    assert "Stopped at qid=" in result.output


def test_discard_command(cache_path, wired_engine):
    _queue_expense(cache_path, "Typo")
    store = DeviceStore(cache_path)
    qid = store.queue.first().qid
    store.close()

    result = CliRunner().invoke(agent_cli.main, ["--cache-path", cache_path, "queue", "discard", str(qid), "--yes"])
    assert result.exit_code == 0, result.output
    assert "PASS Discarded expense_create" in result.output

    result = CliRunner().invoke(agent_cli.main, ["--cache-path", cache_path, "queue", "discard", str(qid), "--yes"])
    assert result.exit_code != 0
    assert f"No queued action with qid {qid}" in result.output


def test_report_command_offline_snapshot(cache_path, wired_engine, transport):
    store = DeviceStore(cache_path)
    store.cache.put("sales", {"id": 1, "amount": 200, "description": "x", "created_at": "2099-01-01T00:00:00Z"})
    store.close()
    transport.offline = True

    result = CliRunner().invoke(agent_cli.main, ["--cache-path", cache_path, "report", "yearly"])
    assert result.exit_code == 0, result.output
    assert "(offline)" in result.output
    assert "Sales:    200" in result.output


def test_report_command_rejects_unknown_period(cache_path, wired_engine):
    result = CliRunner().invoke(agent_cli.main, ["--cache-path", cache_path, "report", "hourly"])
    assert result.exit_code != 0
    assert "period must be one of" in result.output
