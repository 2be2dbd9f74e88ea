import json

import pytest
from typer.testing import CliRunner

from officehub.backend import auth
from officehub.cli import app
from officehub.cli.auth import save_session
from officehub.lib import paths

runner = CliRunner()


def _invoke(*args):
    return runner.invoke(app, list(args))


def _json(*args):
    result = _invoke("--json", *args)
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def test_help_lists_commands():
    result = _invoke("--help")

    assert result.exit_code == 0
    for command in ("signup", "login", "channels", "create", "dm", "send", "messages", "inbox", "read", "relay"):
        assert command in result.output


def test_signup_with_new_organization(test_office):
    result = _invoke("signup", "dana@example.com", "--name", "Dana", "--password", "secret123", "--new-org", "Dana BV")

    assert result.exit_code == 0, result.output
    assert "Signed up as dana@example.com" in result.output
    profile = _json("whoami")
    assert profile["name"] == "Dana"
    assert profile["organization_id"]


def test_login_failure_exits_nonzero(alice):
    result = _invoke("login", "alice@example.com", "--password", "wrong-password")

    assert result.exit_code == 1
    assert "Invalid email or password" in result.output
    assert not paths.session_file().exists()


def test_commands_require_login(test_office):
    result = _invoke("channels")

    assert result.exit_code == 1
    assert "Not logged in" in result.output


def test_login_then_logout(alice):
    assert _invoke("login", "alice@example.com", "--password", "password-a").exit_code == 0
    assert paths.session_file().exists()

    result = _invoke("logout")

    assert result.exit_code == 0
    assert not paths.session_file().exists()


def test_create_send_and_read_history(alice, bob):
    save_session(alice)

    assert _invoke("create", "general").exit_code == 0
    assert _invoke("send", "#general", "hello team").exit_code == 0
    result = _invoke("messages", "general")

    assert result.exit_code == 0
    assert "Alice: hello team" in result.output
    [channel] = _json("channels")
    assert channel["name"] == "general"
    assert len(channel["members"]) == 3


def test_send_with_attachment(alice, tmp_path):
    save_session(alice)
    _invoke("create", "general")
    report = tmp_path / "report.pdf"
    report.write_bytes(b"%PDF-1.7")

    message = _json("send", "general", "--attach", str(report))

    assert message["text"] == ""
    assert message["attachments"][0]["kind"] == "file"
    assert message["attachments"][0]["name"] == "report.pdf"


def test_send_empty_message_fails(alice):
    save_session(alice)
    _invoke("create", "general")

    result = _invoke("send", "general", "   ")

    assert result.exit_code == 1
    assert "text or at least one attachment" in result.output


def test_unknown_channel(alice):
    save_session(alice)

    result = _invoke("messages", "nowhere")

    assert result.exit_code == 1
    assert "Channel not found" in result.output


def test_dm_reuses_channel(alice, bob):
    save_session(alice)

    first = _json("dm", bob.user_id)
    second = _json("dm", bob.user_id)

    assert first["kind"] == "direct"
    assert first["channel_id"] == second["channel_id"]


def test_inbox_and_read(alice, bob):
    save_session(alice)
    _invoke("create", "general")
    _invoke("send", "general", "first")
    _invoke("send", "general", "second")
    save_session(bob)

    result = _invoke("inbox")
    assert "INBOX (2 unread)" in result.output
    assert "Alice in #general - second" in result.output

    inbox = _json("inbox")
    short = inbox["notifications"][0]["notification_id"][-8:]
    assert _invoke("read", short).exit_code == 0
    assert _json("inbox", "--unread")["unread"] == 1

    assert _json("read", "--all")["updated"] == 1
    assert _json("inbox")["unread"] == 0


def test_read_without_target_fails(alice):
    save_session(alice)

    result = _invoke("read")

    assert result.exit_code == 1


def test_quiet_suppresses_output(alice):
    save_session(alice)

    result = _invoke("--quiet", "create", "general")

    assert result.exit_code == 0
    assert result.stdout == ""


def test_expired_saved_session(alice):
    save_session(alice)
    auth.sign_out(alice)

    result = _invoke("channels")

    assert result.exit_code == 1
    assert "Unknown session" in result.output


@pytest.mark.parametrize("flag", ["--json", "-j"])
def test_json_errors(test_office, flag):
    result = _invoke(flag, "inbox")

    assert result.exit_code == 1
    assert json.loads(result.stdout)["status"] == "error"
