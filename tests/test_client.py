import io
import time

from chatd.client import ChatClient
from chatd.messages import MessageType

from conftest import TIMEOUT


def _wait_for_output(out: io.StringIO, text: str, timeout: float = TIMEOUT) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if text in out.getvalue():
            return True
        time.sleep(0.01)
    return text in out.getvalue()


def _client(server, username: str) -> tuple[ChatClient, io.StringIO]:
    out = io.StringIO()
    host, port = server.address
    client = ChatClient(host, port, username, out=out)
    assert client.start()
    assert _wait_for_output(out, f"* User {username} has connected.")
    return client, out


def test_start_fails_without_server() -> None:
    client = ChatClient("127.0.0.1", 1, "nobody", out=io.StringIO())
    assert client.start() is False


def test_lines_become_text_messages(server, connect) -> None:
    listener = connect("listener")
    client, out = _client(server, "alice")

    assert client.handle_line("hello there")
    msg = listener.expect_text("hello there")[-1]
    assert msg.type is MessageType.TEXT
    assert _wait_for_output(out, f"{msg.sender_id}: hello there")
    client.disconnect()


def test_block_and_unblock_commands(server) -> None:
    client, out = _client(server, "alice")

    assert client.handle_line("/block bob")
    assert _wait_for_output(out, "* User alice has blocked bob.")
    assert client.handle_line("/unblock bob")
    assert _wait_for_output(out, "* User alice has unblocked bob.")
    client.disconnect()


def test_logout_is_case_insensitive(server, connect) -> None:
    listener = connect("listener")
    client, out = _client(server, "alice")

    assert client.handle_line("LogOut") is False
    assert "You have been logged out." in out.getvalue()
    assert "Disconnected from server." not in out.getvalue()
    listener.expect_notice("User alice has logged out.")
    client.disconnect()
    assert not client.carry_on


def test_run_console_stops_at_logout(server, connect) -> None:
    listener = connect("listener")
    client, _ = _client(server, "alice")

    client.run_console(io.StringIO("first\nlogout\nnever sent\n"))

    seen = listener.expect_notice("User alice has logged out.")
    bodies = [m.body for m in seen]
    assert "first" in bodies
    assert "never sent" not in bodies
    assert not client.carry_on


def test_shutdown_command_reports_server_shutdown(server) -> None:
    client, out = _client(server, "alice")

    assert client.handle_line("/shutdown")
    assert _wait_for_output(out, "Server has been shut down.")
    client.join(TIMEOUT)
    assert not client.carry_on
    assert server.wait(TIMEOUT)


def test_connection_loss_is_reported(server) -> None:
    client, out = _client(server, "alice")

    session = server.registry.sessions()[0]
    session.channel.close()

    assert _wait_for_output(out, "Disconnected from server.")
    client.join(TIMEOUT)
    assert not client.carry_on
