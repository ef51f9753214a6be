import errno
import io
import ipaddress
import socket
import threading

from airsane.accessfile import AccessFile
from airsane.server import (
    ANY_INTERFACE,
    INVALID_INTERFACE,
    HttpServer,
    describe_address,
    interface_addresses,
    ip_string,
    port_number,
)


def _echo(request, response):
    if request.uri == "/hello":
        response.set_header("Content-Type", "text/plain")
        response.send_with_content("hello world")
    elif request.uri == "/chunked":
        response.set_header("Transfer-Encoding", "chunked")
        out = response.send()
        out.write(b"hello")


def _read_all(sock):
    chunks = []
    while True:
        data = sock.recv(4096)
        if not data:
            break
        chunks.append(data)
    return b"".join(chunks)


def _exchange(server, payload, address=("127.0.0.1", 40000)):
    client, conn = socket.socketpair()
    with client:
        client.sendall(payload)
        server.handle_connection(conn, address)
        return _read_all(client)


def _quiet(server):
    server.on_request = _echo
    server.access_log = None
    return server


def test_ip_string_variants():
    assert ip_string(("192.0.2.1", 80)) == "192.0.2.1"
    assert ip_string(("::1", 80, 0, 0)) == "[::1]"
    assert ip_string("") == "unix"
    assert ip_string(None) == "n/a"


def test_port_number():
    assert port_number(("192.0.2.1", 8080)) == 8080
    assert port_number(("::1", 8090, 0, 0)) == 8090
    assert port_number("/run/sock") == 0


def test_describe_address():
    assert describe_address(("192.0.2.1", 8080)) == "192.0.2.1:8080"
    assert describe_address(("::1", 8080, 0, 0)) == "[::1]:8080"
    assert describe_address("/run/airsane.sock") == "/run/airsane.sock"


def test_interface_addresses_have_port_zero():
    for address in interface_addresses(None):
        assert address[1] == 0
        ipaddress.ip_address(address[0])


def test_interface_addresses_unknown_interface_is_empty():
    assert interface_addresses("no-such-if0") == []


def test_defaults():
    server = HttpServer()
    assert server.port == 8080
    assert server.interface_index == ANY_INTERFACE
    assert server.interface_name == "*"
    assert server.unix_socket == ""


def test_setters_chain():
    server = HttpServer().set_port(1234).set_backlog(7).set_unix_socket("/tmp/x.sock")
    assert (server.port, server.backlog, server.unix_socket) == (1234, 7, "/tmp/x.sock")


def test_invalid_interface_name():
    server = HttpServer().set_interface_name("no-such-if0")
    assert server.interface_index == INVALID_INTERFACE
    assert server.interface_name == "<invalid>"


def test_interface_index_name_round_trip():
    index, name = socket.if_nameindex()[0]
    server = HttpServer().set_interface_index(index)
    assert server.interface_name == name
    assert HttpServer().set_interface_name(name).interface_index == index


def test_interface_index_special_values():
    server = HttpServer().set_interface_index(INVALID_INTERFACE)
    assert server.interface_name == "<invalid>"
    server.set_interface_index(ANY_INTERFACE)
    assert server.interface_name == "*"


def test_run_with_invalid_interface_fails():
    server = HttpServer().set_interface_index(INVALID_INTERFACE)
    assert server.run() is False
    assert server.last_error == errno.ENXIO
    assert server.termination_status == -1


def test_run_with_too_long_socket_path_fails():
    server = HttpServer().set_unix_socket("/tmp/" + "x" * 200)
    assert server.run() is False
    assert server.last_error == errno.ENAMETOOLONG


def test_terminate_when_not_running_sets_status():
    server = HttpServer()
    assert server.terminate(3) is True
    assert server.termination_status == 3


def test_handle_connection_serves_content():
    server = _quiet(HttpServer())
    reply = _exchange(server, b"GET /hello HTTP/1.1\r\nHost: x\r\n\r\n")
    assert reply.startswith(b"HTTP/1.1 200 OK\r\n")
    assert b"content-length: 11\r\n" in reply
    assert reply.endswith(b"\r\n\r\nhello world")


def test_handle_connection_chunked():
    server = _quiet(HttpServer())
    reply = _exchange(server, b"GET /chunked HTTP/1.1\r\n\r\n")
    assert reply.endswith(b"\r\n\r\n5\r\nhello\r\n0\r\n\r\n")
    assert b"content-length" not in reply


def test_handle_connection_not_found():
    server = _quiet(HttpServer())
    reply = _exchange(server, b"GET /missing HTTP/1.1\r\n\r\n")
    assert reply.startswith(b"HTTP/1.1 404 Not Found\r\n")
    assert b"Error 404: Not Found" in reply


def test_handle_connection_bad_request():
    server = _quiet(HttpServer())
    reply = _exchange(server, b"garbage\r\n\r\n")
    assert reply.startswith(b"HTTP/1.1 400 Bad Request\r\n")


def test_access_denied_closes_connection(tmp_path):
    rules = tmp_path / "access.conf"
    rules.write_text("deny 127.0.0.1\n")
    server = _quiet(HttpServer()).apply_access_file(AccessFile(str(rules)))
    assert _exchange(server, b"GET /hello HTTP/1.1\r\n\r\n") == b""


def test_access_allowed(tmp_path):
    rules = tmp_path / "access.conf"
    rules.write_text("allow 127.0.0.1\n")
    server = _quiet(HttpServer()).apply_access_file(AccessFile(str(rules)))
    reply = _exchange(server, b"GET /hello HTTP/1.1\r\n\r\n")
    assert reply.startswith(b"HTTP/1.1 200 OK\r\n")


def test_access_log_line():
    server = HttpServer()
    server.on_request = _echo
    server.access_log = io.StringIO()
    _exchange(server, b"GET /hello HTTP/1.1\r\nUser-Agent: probe\r\n\r\n")
    line = server.access_log.getvalue()
    assert line.startswith("127.0.0.1 - - [")
    assert '"GET /hello" 200 11 "" "probe"' in line


def test_run_over_unix_socket(tmp_path):
    path = str(tmp_path / "s.sock")
    server = _quiet(HttpServer()).set_unix_socket(path)
    result = {}
    thread = threading.Thread(target=lambda: result.setdefault("ok", server.run()))
    thread.start()
    assert server.listening.wait(5)

    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as client:
        client.connect(path)
        client.sendall(b"GET /hello HTTP/1.1\r\n\r\n")
        reply = _read_all(client)
    assert reply.endswith(b"hello world")

    assert server.terminate(5) is True
    thread.join(5)
    assert result["ok"] is True
    assert server.termination_status == 5
    assert server.last_error == 0


def test_run_twice_concurrently_fails(tmp_path):
    path = str(tmp_path / "t.sock")
    server = _quiet(HttpServer()).set_unix_socket(path)
    thread = threading.Thread(target=server.run)
    thread.start()
    assert server.listening.wait(5)
    assert server.run() is False
    assert server.termination_status == -1
    server.terminate(0)
    thread.join(5)
    assert not thread.is_alive()