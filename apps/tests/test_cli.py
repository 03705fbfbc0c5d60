"""
Command line tests. Client commands run against the app in-process.

Run with:
    pytest apps/tests/test_cli.py -v
"""

import json

import httpx
import pytest

from apps.services.registry import dependencies
from apps.services.registry.app import app
from millionbase import cli
from millionbase.client.registry_client import RegistryClient


@pytest.fixture
def run_cli(small_store, monkeypatch):
    dependencies.reset_dependencies(close=False)
    dependencies.set_store(small_store)
    transports = {"factory": lambda: httpx.ASGITransport(app=app)}

    def client_factory(base_url=None, **kwargs):
        return RegistryClient("http://registry.test", transport=transports["factory"](), **kwargs)

    monkeypatch.setattr(cli, "RegistryClient", client_factory)
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)

    def run(*argv):
        return cli.main(list(argv))

    run.transports = transports
    yield run
    dependencies.reset_dependencies(close=False)


def test_status(run_cli, small_store, capsys):
    small_store.claim(0, "bob")
    assert run_cli("status") == 0
    out = capsys.readouterr().out
    assert "Minted 1 / 3" in out
    assert "2 cells remaining" in out


def test_status_sold_out(run_cli, small_store, capsys):
    for i in range(3):
        small_store.claim(i, "bob")
    assert run_cli("status") == 0
    assert "All cells claimed!" in capsys.readouterr().out


def test_check(run_cli, small_store, capsys):
    small_store.claim(2, "bob")
    assert run_cli("check", "2") == 0
    assert "Cell 2: claimed by bob" in capsys.readouterr().out
    assert run_cli("check", "1") == 0
    assert "Cell 1: unclaimed" in capsys.readouterr().out


def test_check_out_of_range_exits_with_error(run_cli, capsys):
    assert run_cli("check", "9") == 2
    assert "outside" in capsys.readouterr().err


def test_claim(run_cli, small_store, capsys):
    assert run_cli("claim", "1", "--as", "alice") == 0
    out = capsys.readouterr().out
    assert "Claimed cell 1 (#1)" in out
    assert "Minted 1 / 3" in out
    assert small_store.get_record(1).claimant == "alice"

    assert run_cli("claim", "1", "--as", "bob") == 1
    assert "already_claimed" in capsys.readouterr().err


def test_claim_out_of_range(run_cli, capsys):
    assert run_cli("claim", "3", "--as", "alice") == 1
    assert "out_of_range" in capsys.readouterr().err


def test_assist(run_cli, small_store, capsys):
    assert run_cli("assist", "0", "--beneficiary", "winner", "--operator", "ops") == 0
    assert "claimed for winner by ops" in capsys.readouterr().out

    assert run_cli("assist", "1", "--beneficiary", "winner", "--operator", "mallory") == 1
    assert "not_authorized" in capsys.readouterr().err
    assert small_store.is_claimed(1) is False


def test_watch_prints_events(run_cli, capsys):
    record = {"cell_index": 4, "claimant": "bob", "order": 1, "claimed_at": 1700000000.0, "assisted_by": "ops"}
    body = f"event: claim\nid: 1\ndata: {json.dumps(record)}\n\n"
    run_cli.transports["factory"] = lambda: httpx.MockTransport(
        lambda request: httpx.Response(200, content=body.encode())
    )
    assert run_cli("watch") == 0
    assert "#1 cell=4 claimant=bob via ops" in capsys.readouterr().out


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])
