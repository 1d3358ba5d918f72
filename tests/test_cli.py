import io

import pytest

from keyble_register import cli
from keyble_register.errors import PairingTimeout

from conftest import FakeFactory, make_card_data


@pytest.fixture
def fake_factory(monkeypatch):
    factory = FakeFactory()
    monkeypatch.setattr(cli, "bleak_session_factory", lambda **kwargs: factory)
    return factory


def test_parse_args_defaults():
    args = cli.parse_args([])

    assert args.user_name == "keyble"
    assert args.qr_code_data is None
    assert args.grace_period == 2.0
    assert not args.verbose


def test_parse_args_accepts_both_spellings():
    args = cli.parse_args(["--user-name", "Alice", "--qr_code_data", "M123"])
    assert args.user_name == "Alice"
    assert args.qr_code_data == "M123"

    args = cli.parse_args(["-n", "Bob", "-q", "M456"])
    assert args.user_name == "Bob"
    assert args.qr_code_data == "M456"


@pytest.mark.asyncio
async def test_register_users_from_stream(capsys):
    factory = FakeFactory()
    args = cli.parse_args(["-n", "Alice"])
    stream = io.StringIO(make_card_data() + "\n")

    code = await cli.register_users(args, session_factory=factory, stream=stream)

    assert code == 0
    assert factory.operations("set_user_name") == [("set_user_name", "AA:BB:CC:DD:EE:FF", "Alice")]
    assert "✓" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_register_users_failure_exit_code(capsys):
    factory = FakeFactory({"AA:BB:CC:DD:EE:FF": {"pairing_request": PairingTimeout("no answer")}})
    args = cli.parse_args(["--grace-period", "0"])
    stream = io.StringIO(make_card_data() + "\n")

    code = await cli.register_users(args, session_factory=factory, stream=stream)

    assert code == 1
    assert "PairingTimeout" in capsys.readouterr().out


def test_main_with_qr_code_data(fake_factory):
    code = cli.main(["-q", make_card_data(), "--grace-period", "0"])

    assert code == 0
    assert fake_factory.operations("open") == [("open", "AA:BB:CC:DD:EE:FF")]


def test_main_with_empty_stdin(fake_factory, monkeypatch):
    monkeypatch.setattr("sys.stdin", io.StringIO(""))

    assert cli.main([]) == 0
    assert fake_factory.calls == []


def test_main_malformed_card(fake_factory):
    assert cli.main(["-q", "garbage", "--grace-period", "0"]) == 1
    assert fake_factory.calls == []


def test_run_forces_exit(monkeypatch):
    exits = []
    monkeypatch.setattr(cli, "main", lambda: 1)
    monkeypatch.setattr(cli.os, "_exit", exits.append)
    monkeypatch.setattr(cli.logging, "shutdown", lambda: None)

    cli.run()

    assert exits == [1]


def test_main_interrupted_returns_failure(monkeypatch):
    async def interrupted(args):
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "register_users", interrupted)

    assert cli.main([]) == 1
