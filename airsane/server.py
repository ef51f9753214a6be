"""A small threaded HTTP server listening on network interfaces or a unix socket."""

from __future__ import annotations

import datetime
import errno
import ipaddress
import logging
import os
import selectors
import socket
import struct
import sys
import threading
from typing import TextIO

import psutil

from .accessfile import AccessFile
from .errorpage import ErrorPage
from .message import (
    HTTP_BAD_REQUEST,
    HTTP_HEADER_REFERER,
    HTTP_HEADER_USER_AGENT,
    HTTP_NOT_FOUND,
    Request,
    Response,
)

log = logging.getLogger(__name__)

ANY_INTERFACE = -1
INVALID_INTERFACE = 0

_STATUS = struct.Struct("i")
# size of sun_path in struct sockaddr_un
_UNIX_PATH_MAX = 108


def _family(address) -> int | None:
    """Guess the address family of a socket address as Python represents it."""
    if isinstance(address, (str, bytes)):
        return socket.AF_UNIX
    if isinstance(address, tuple):
        if len(address) == 2:
            return socket.AF_INET
        if len(address) == 4:
            return socket.AF_INET6
    return None


def ip_string(address) -> str:
    """Return the host part of a socket address for display."""
    family = _family(address)
    if family == socket.AF_INET:
        return str(address[0])
    if family == socket.AF_INET6:
        return f"[{address[0]}]"
    if family == socket.AF_UNIX:
        return "unix"
    return "n/a"


def port_number(address) -> int:
    """Return the port of an IP socket address, or 0."""
    if _family(address) in (socket.AF_INET, socket.AF_INET6):
        return int(address[1])
    return 0


def describe_address(address) -> str:
    """Describe a listening address as host:port, or a unix socket path."""
    family = _family(address)
    if family in (socket.AF_INET, socket.AF_INET6):
        return f"{ip_string(address)}:{port_number(address)}"
    if family == socket.AF_UNIX:
        return os.fsdecode(address)
    return ""


def _scope_id(name: str) -> int:
    try:
        return socket.if_nametoindex(name)
    except OSError:
        return 0


def interface_addresses(if_name: str | None = None) -> list[tuple]:
    """Return socket addresses (port 0) of one interface, or of all when if_name is None."""
    try:
        interfaces = psutil.net_if_addrs()
    except OSError as exc:
        log.error("%s", exc)
        return []
    result: list[tuple] = []
    for name, addrs in interfaces.items():
        if if_name is not None and if_name != name:
            continue
        for addr in addrs:
            if addr.family == socket.AF_INET:
                result.append((addr.address, 0))
            elif addr.family == socket.AF_INET6:
                host, _, scope = addr.address.partition("%")
                scope_id = _scope_id(name) if scope or ipaddress.IPv6Address(host).is_link_local else 0
                result.append((host, 0, 0, scope_id))
    return result


class HttpServer:
    """HTTP server; subclasses answer requests in on_request()."""

    ANY_INTERFACE = ANY_INTERFACE
    INVALID_INTERFACE = INVALID_INTERFACE

    def __init__(self) -> None:
        self._interface_name = "*"
        self._interface_index = ANY_INTERFACE
        self._port = 8080
        self._unix_socket = ""
        self._backlog = socket.SOMAXCONN
        self._access_file = AccessFile()
        self._access_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._running = False
        self._pipe_write_fd = -1
        self._termination_status = 0
        self._last_error = 0
        self.listening = threading.Event()
        self.access_log: TextIO | None = sys.stdout

    @property
    def interface_name(self) -> str:
        return self._interface_name

    @property
    def interface_index(self) -> int:
        return self._interface_index

    @property
    def port(self) -> int:
        return self._port

    @property
    def unix_socket(self) -> str:
        return self._unix_socket

    @property
    def backlog(self) -> int:
        return self._backlog

    @property
    def termination_status(self) -> int:
        return self._termination_status

    @property
    def last_error(self) -> int:
        return self._last_error

    def _set_invalid_interface(self) -> None:
        self._interface_name = "<invalid>"
        self._interface_index = INVALID_INTERFACE

    def set_interface_name(self, name: str) -> "HttpServer":
        if name == "*":
            self._interface_name = "*"
            self._interface_index = ANY_INTERFACE
            return self
        try:
            index = socket.if_nametoindex(name)
        except OSError:
            index = 0
        if index == 0:
            self._set_invalid_interface()
        else:
            self._interface_name = name
            self._interface_index = index
        return self

    def set_interface_index(self, index: int) -> "HttpServer":
        if index == ANY_INTERFACE:
            self._interface_name = "*"
            self._interface_index = ANY_INTERFACE
        elif index == INVALID_INTERFACE:
            self._set_invalid_interface()
        else:
            try:
                self._interface_name = socket.if_indextoname(index)
                self._interface_index = index
            except (OSError, OverflowError):
                self._set_invalid_interface()
        return self

    def set_port(self, port: int) -> "HttpServer":
        self._port = port
        return self

    def set_unix_socket(self, path: str) -> "HttpServer":
        self._unix_socket = path
        return self

    def set_backlog(self, backlog: int) -> "HttpServer":
        self._backlog = backlog
        return self

    def apply_access_file(self, access_file: AccessFile) -> "HttpServer":
        with self._access_lock:
            self._access_file = access_file
        return self

    def _determine_addresses(self) -> list:
        if self._unix_socket:
            if len(os.fsencode(self._unix_socket)) >= _UNIX_PATH_MAX:
                raise OSError(errno.ENAMETOOLONG, os.strerror(errno.ENAMETOOLONG))
            addresses = [self._unix_socket]
        else:
            if self._interface_index == INVALID_INTERFACE:
                raise OSError(errno.ENXIO, os.strerror(errno.ENXIO))
            if_name = None if self._interface_index == ANY_INTERFACE else self._interface_name
            addresses = interface_addresses(if_name)
        if not addresses:
            raise OSError(errno.EINVAL, os.strerror(errno.EINVAL))
        return addresses

    def _create_listening_socket(self, address) -> tuple[socket.socket, object]:
        family = _family(address)
        if family == socket.AF_INET:
            address = (address[0], self._port)
        elif family == socket.AF_INET6:
            address = (address[0], self._port, address[2], address[3])
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            if family == socket.AF_UNIX:
                try:
                    os.unlink(address)
                except FileNotFoundError:
                    pass
            else:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(address)
            if family == socket.AF_UNIX:
                os.chmod(address, 0o660)
            sock.listen(self._backlog)
        except OSError:
            sock.close()
            raise
        return sock, address

    def _serve(self, read_fd: int, listeners: list[socket.socket]) -> None:
        with selectors.DefaultSelector() as selector:
            selector.register(read_fd, selectors.EVENT_READ, None)
            for sock in listeners:
                selector.register(sock, selectors.EVENT_READ, sock)
            while True:
                ready = [key.data for key, _ in selector.select()]
                if None in ready:
                    data = os.read(read_fd, _STATUS.size)
                    if len(data) != _STATUS.size:
                        raise OSError(errno.EBADMSG, "error reading from internal pipe")
                    self._termination_status = _STATUS.unpack(data)[0]
                    return
                for sock in ready:
                    try:
                        connection, address = sock.accept()
                    except OSError:
                        continue
                    threading.Thread(
                        target=self.handle_connection,
                        args=(connection, address),
                        daemon=True,
                    ).start()

    def run(self) -> bool:
        """Serve until terminate() is called; return False on error."""
        with self._state_lock:
            if self._running:
                log.error("server already running")
                self._termination_status = -1
                return False
            try:
                read_fd, write_fd = os.pipe()
            except OSError as exc:
                self._last_error = exc.errno or errno.EIO
                self._termination_status = -1
                return False
            self._pipe_write_fd = write_fd
            self._running = True
            self._termination_status = 0

        err = 0
        listeners: list[socket.socket] = []
        try:
            for address in self._determine_addresses():
                try:
                    sock, bound = self._create_listening_socket(address)
                except OSError as exc:
                    # may occur due to race condition at network reconfiguration
                    if exc.errno == errno.EADDRNOTAVAIL:
                        continue
                    raise
                listeners.append(sock)
                log.info("listening on %s", describe_address(bound))
            self.listening.set()
            self._serve(read_fd, listeners)
        except OSError as exc:
            err = exc.errno or errno.EIO
            log.error("%s", exc)
        finally:
            for sock in listeners:
                sock.close()
            self.listening.clear()
            with self._state_lock:
                os.close(read_fd)
                os.close(self._pipe_write_fd)
                self._pipe_write_fd = -1
                self._running = False

        self._last_error = err
        if err and not self._termination_status:
            self._termination_status = -1
        return err == 0

    def terminate(self, status: int) -> bool:
        """Ask a running server to stop with the given status."""
        with self._state_lock:
            if not self._running:
                self._termination_status = status
                return True
            fd = self._pipe_write_fd
            try:
                return os.write(fd, _STATUS.pack(status)) == _STATUS.size
            except OSError:
                return False

    def handle_connection(self, connection: socket.socket, address) -> None:
        """Serve a single request on an accepted connection, then close it."""
        with self._access_lock:
            allowed = self._access_file.is_allowed(address)
        if not allowed:
            connection.close()
            return
        try:
            with connection, connection.makefile("rb") as rfile, connection.makefile("wb") as wfile:
                request = Request(rfile)
                response = Response(wfile)
                with response:
                    if not request.valid:
                        response.status = HTTP_BAD_REQUEST
                        ErrorPage(HTTP_BAD_REQUEST).render(request, response)
                    else:
                        self.on_request(request, response)
                        if not response.sent:
                            response.status = HTTP_NOT_FOUND
                            ErrorPage(HTTP_NOT_FOUND).render(request, response)
                            log.warning('Error 404 when requesting "%s"', request.uri)
                wfile.flush()
                self._log_access(address, request, response)
        except (OSError, ValueError) as exc:
            log.error("error handling request from %s: %s", ip_string(address), exc)

    def _log_access(self, address, request: Request, response: Response) -> None:
        if self.access_log is None:
            return
        now = datetime.datetime.now().astimezone().strftime("%d/%b/%Y:%H:%M:%S %z")
        # apache combined log format, custom loginfo added
        line = (
            f'{ip_string(address)} - - [{now}] "{request.method} {request.uri}" '
            f"{response.status} {response.content_size()}"
            f' "{request.header(HTTP_HEADER_REFERER)}"'
            f' "{request.header(HTTP_HEADER_USER_AGENT)}"'
        )
        if request.log_info:
            line += f' "{request.log_info}"'
        self.access_log.write(line + "\n")
        self.access_log.flush()

    def on_request(self, request: Request, response: Response) -> None:
        """Answer a request; leaving the response unsent yields a 404 page."""