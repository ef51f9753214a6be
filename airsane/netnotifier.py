"""Notification about IP addresses appearing on or leaving network interfaces."""

from __future__ import annotations

import enum
import errno
import ipaddress
import logging
import os
import selectors
import socket
import struct
import threading
from dataclasses import dataclass

import psutil

log = logging.getLogger(__name__)

NETLINK_ROUTE = 0
RTMGRP_IPV4_IFADDR = 0x10
RTMGRP_IPV6_IFADDR = 0x100

NLMSG_DONE = 3
RTM_NEWADDR = 20
RTM_DELADDR = 21
RTM_GETADDR = 22
IFA_ADDRESS = 1
MSG_TRUNC = 0x20

_ADDRESS_MESSAGES = (RTM_NEWADDR, RTM_DELADDR, RTM_GETADDR)
_NLMSGHDR = struct.Struct("=IHHII")
_IFADDRMSG = struct.Struct("=BBBBI")
_RTATTR = struct.Struct("=HH")
_BUFFER_SIZE = 4096

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


class Event(enum.Enum):
    OTHER = 0
    ADDRESS_ARRIVED = 1
    ADDRESS_LEFT = 2
    ADDRESS_CHANGE = 3


@dataclass(frozen=True)
class AddressMessage:
    """An address message from the kernel's routing socket."""

    type: int
    family: int
    index: int
    address: IPAddress | None


def _align(length: int) -> int:
    return (length + 3) & ~3


def _parse_attributes(family: int, attributes: bytes) -> IPAddress | None:
    address: IPAddress | None = None
    offset = 0
    remaining = len(attributes)
    while remaining >= _RTATTR.size:
        rta_len, rta_type = _RTATTR.unpack_from(attributes, offset)
        if rta_len < _RTATTR.size or rta_len > remaining:
            break
        payload = attributes[offset + _RTATTR.size: offset + rta_len]
        if rta_type == IFA_ADDRESS:
            if family == socket.AF_INET and len(payload) >= 4:
                address = ipaddress.IPv4Address(payload[:4])
            elif family == socket.AF_INET6 and len(payload) >= 16:
                address = ipaddress.IPv6Address(payload[:16])
        step = _align(rta_len)
        offset += step
        remaining -= step
    return address


def _parse_address_message(msg_type: int, body: bytes) -> AddressMessage | None:
    if len(body) < _IFADDRMSG.size:
        return None
    family, _prefixlen, _flags, _scope, index = _IFADDRMSG.unpack_from(body, 0)
    attributes = body[_align(_IFADDRMSG.size):]
    address = _parse_attributes(family, attributes)
    return AddressMessage(msg_type, family, index, address)


def parse_netlink_messages(data: bytes) -> list[AddressMessage]:
    """Extract the address messages from a buffer read from a routing socket."""
    data = bytes(data)
    if len(data) < _NLMSGHDR.size:
        return []
    _, _, first_flags, _, _ = _NLMSGHDR.unpack_from(data, 0)
    if first_flags & MSG_TRUNC:
        return []
    messages: list[AddressMessage] = []
    offset = 0
    remaining = len(data)
    while remaining >= _NLMSGHDR.size:
        length, msg_type, _flags, _seq, _pid = _NLMSGHDR.unpack_from(data, offset)
        if length < _NLMSGHDR.size or length > remaining or msg_type == NLMSG_DONE:
            break
        if msg_type in _ADDRESS_MESSAGES:
            message = _parse_address_message(
                msg_type, data[offset + _NLMSGHDR.size: offset + length]
            )
            if message is not None:
                messages.append(message)
        step = _align(length)
        offset += step
        remaining -= step
    return messages


def _ip_string(address: IPAddress) -> str:
    return f"[{address}]" if address.version == 6 else str(address)


class NetworkHotplugNotifier:
    """Watches for IP address changes; subclasses react in on_hotplug_event()."""

    def __init__(self) -> None:
        self.addresses: set[IPAddress] = set()
        self._thread: threading.Thread | None = None
        self._pipe: tuple[int, int] | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Open the routing socket and start watching in a background thread."""
        if self._thread is not None:
            raise RuntimeError("notifier already started")
        family = getattr(socket, "AF_NETLINK", None)
        if family is None:
            raise OSError(errno.ENOTSUP, "netlink sockets are not supported")
        sock = socket.socket(family, socket.SOCK_RAW, NETLINK_ROUTE)
        try:
            sock.bind((0, RTMGRP_IPV4_IFADDR | RTMGRP_IPV6_IFADDR))
            self._pipe = os.pipe()
        except OSError:
            sock.close()
            raise
        self.init_addresses()
        self._thread = threading.Thread(
            target=self._watch, args=(sock, self._pipe[0]), daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the background thread and release its resources."""
        if self._thread is None or self._pipe is None:
            return
        read_fd, write_fd = self._pipe
        try:
            os.write(write_fd, b"0")
        except OSError as exc:
            log.error("%s", exc)
        self._thread.join()
        os.close(write_fd)
        os.close(read_fd)
        self._thread = None
        self._pipe = None

    def __enter__(self) -> "NetworkHotplugNotifier":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def init_addresses(self) -> None:
        """Record the addresses currently present on all interfaces."""
        self.addresses.clear()
        try:
            interfaces = psutil.net_if_addrs()
        except OSError as exc:
            log.error("Could not get addresses: %s", exc)
            return
        for addrs in interfaces.values():
            for addr in addrs:
                if addr.family not in (socket.AF_INET, socket.AF_INET6):
                    continue
                host = addr.address.split("%")[0]
                try:
                    self.addresses.add(ipaddress.ip_address(host))
                except ValueError:
                    continue

    def process(self, data: bytes) -> None:
        """Handle a buffer read from the routing socket."""
        for message in parse_netlink_messages(data):
            address = message.address
            if address is None:
                continue
            if message.type == RTM_NEWADDR:
                if address not in self.addresses:
                    self.addresses.add(address)
                    log.info("New IP address: %s", _ip_string(address))
                    self.on_hotplug_event(Event.ADDRESS_ARRIVED)
            elif message.type == RTM_DELADDR:
                self.addresses.discard(address)
                log.info("IP address gone: %s", _ip_string(address))
                self.on_hotplug_event(Event.ADDRESS_LEFT)

    def on_hotplug_event(self, event: Event) -> None:
        """Called when an address arrives or leaves."""

    def _watch(self, sock: socket.socket, read_fd: int) -> None:
        with sock, selectors.DefaultSelector() as selector:
            selector.register(read_fd, selectors.EVENT_READ, None)
            selector.register(sock, selectors.EVENT_READ, sock)
            while True:
                events = selector.select()
                if any(key.data is None for key, _ in events):
                    return
                try:
                    data = sock.recv(_BUFFER_SIZE)
                except InterruptedError:
                    continue
                except OSError as exc:
                    if exc.errno == errno.ENOBUFS:
                        continue
                    log.error("error reading from netlink socket: %s", exc)
                    return
                if data:
                    self.process(data)