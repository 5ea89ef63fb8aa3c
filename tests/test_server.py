import paramiko
import pytest

from fakes import FakeTransport
from ssh_session import server
from ssh_session.constants import AuthResult, SshStatus
from ssh_session.datastructures import CommandResult, CommandStatus
from ssh_session.errors import CommandTimeoutError
from ssh_session.session import Session


@pytest.fixture
def transport(monkeypatch, tmp_path):
    fake = FakeTransport(script={
        "hostname": [(0, "stdout", b"app01\n"), (0, "exit", 0)],
        "false": [(0, "stderr", b"failed\n"), (0, "exit", 1)],
    })
    fake.host_key = paramiko.ECDSAKey.generate()

    def make_session(error_policy):
        session = Session(error_policy=error_policy, transport=fake)
        session.options(SshDir=str(tmp_path))
        return session

    monkeypatch.setattr(server, "Session", make_session)
    return fake


def test_format_results_follows_exit_status_layout():
    completed = CommandResult("uname", CommandStatus.COMPLETED, SshStatus.OK, "Linux\n", "", 0, exit_code=0)
    timed_out = CommandResult(
        "sleep 999", CommandStatus.TIMED_OUT, SshStatus.AGAIN, "", "", 1,
        error=CommandTimeoutError("Command produced no output for 120 seconds", reason="nodata"),
    )

    text = server.format_results([completed, timed_out])

    assert "$ uname\nExit Status: 0\n\nSTDOUT:\nLinux\n" in text
    assert "$ sleep 999\nStatus: timed_out (Command produced no output for 120 seconds)" in text
    assert "STDERR" not in text


def test_run_batch_reports_in_submission_order(transport):
    text = server.run_batch("app01", ["hostname", "false"], username="deploy", password="pw")

    assert text.index("$ hostname") < text.index("$ false")
    assert "Exit Status: 1" in text
    assert "STDERR:\nfailed\n" in text
    assert not transport.connected


def test_run_batch_connect_failure(transport):
    transport.connect_error = "Unable to connect to app01:22 - timed out"

    text = server.run_batch("app01", ["hostname"])

    assert text == "Error: connect failed: Unable to connect to app01:22 - timed out"


def test_run_batch_auth_denied(transport):
    transport.auth_results['password'] = AuthResult.DENIED

    text = server.run_batch("app01", ["hostname"], password="nope")

    assert text.startswith("Error: authentication failed (DENIED)")
    assert transport.channels == []


def test_run_batch_rejects_bad_parallel(transport):
    text = server.run_batch("app01", ["hostname"], password="pw", parallel=0)

    assert text.startswith("Error: parallel must be a positive integer")


def test_host_key_report_records_new_host(transport, tmp_path):
    text = server.host_key_report("app01")

    assert "Host key state: not_found" in text
    assert "Rejected" not in text
    assert (tmp_path / "known_hosts").exists()

    again = server.host_key_report("app01")
    assert "Host key state: known_ok" in again
