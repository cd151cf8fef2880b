"""Tests for the closure command-line interface."""

import json

import pytest
from typer.testing import CliRunner

from interfaces import cli

runner = CliRunner()


@pytest.fixture
def wired(services, monkeypatch):
    """Point the CLI at the in-memory closure core."""
    monkeypatch.setattr(cli, "_services", lambda: services)
    return services


def test_rebuild_one(wired, small_ontology):
    result = runner.invoke(cli.app, ["rebuild", "alice"])

    assert result.exit_code == 0
    assert "alice: 3 terms indexed" in result.output
    assert wired.store.node_property(small_ontology["alice"], "closure_generation") == 1


def test_rebuild_unknown(wired, small_ontology):
    result = runner.invoke(cli.app, ["rebuild", "mallory"])

    assert result.exit_code == 0
    assert "not found" in result.output


def test_rebuild_all_then_invalidate_all(wired, graph, small_ontology):
    graph.principal("bob", graph.dataset(8, small_ontology["X"]))

    rebuilt = runner.invoke(cli.app, ["rebuild"])
    removed = runner.invoke(cli.app, ["invalidate"])

    assert rebuilt.exit_code == 0
    assert "bob: 2 terms indexed" in rebuilt.output
    assert removed.exit_code == 0
    assert "Removed 5 index tags" in removed.output


def test_histogram(wired, small_ontology):
    result = runner.invoke(cli.app, ["histogram"])

    assert result.exit_code == 0
    assert json.loads(result.output) == [1]


def test_histogram_invalid_ontology(wired, small_ontology):
    result = runner.invoke(cli.app, ["histogram", "--ontology", "C L"])

    assert result.exit_code == 2


def test_export_keyed(wired, graph, small_ontology):
    runner.invoke(cli.app, ["rebuild", "alice"])

    result = runner.invoke(cli.app, ["export", "alice", "--shape", "keyed"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert graph.uri(small_ontology["B"]) in payload["nodes"]


def test_export_rejects_unknown_shape(wired, small_ontology):
    result = runner.invoke(cli.app, ["export", "alice", "--shape", "tree"])

    assert result.exit_code == 2


def test_export_direct_ignores_case(wired, graph, small_ontology):
    result = runner.invoke(cli.app, ["export", "alice", "--shape", "KEYED", "--source", "Direct"])

    assert result.exit_code == 0
    assert graph.uri(small_ontology["B"]) in json.loads(result.stdout)["nodes"]
