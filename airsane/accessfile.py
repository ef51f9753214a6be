"""Client access rules read from a configuration file."""

from __future__ import annotations

import enum
import ipaddress
import logging
import re
import socket
from dataclasses import dataclass

import psutil

log = logging.getLogger(__name__)

_IF_KEYWORDS = "local on "
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")

Network = ipaddress.IPv4Network | ipaddress.IPv6Network
Address = ipaddress.IPv4Address | ipaddress.IPv6Address


class RuleKind(enum.Enum):
    ALLOW = "allow"
    DENY = "deny"


def _atoi(s: str) -> int:
    match = _LEADING_INT.match(s)
    return int(match.group(1)) if match else 0


def _to_ip(address) -> Address | None:
    """Convert an address, host string or socket address tuple to an IP address."""
    if isinstance(address, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return address
    if isinstance(address, tuple) and address:
        address = address[0]
    if not isinstance(address, str):
        return None
    host = address.strip("[]").split("%")[0]
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        return None


def _interface_network(addr) -> Network | None:
    host = addr.address.split("%")[0]
    if addr.family == socket.AF_INET:
        if addr.netmask:
            return ipaddress.ip_network(f"{host}/{addr.netmask}", strict=False)
        return ipaddress.ip_network(host)
    if addr.family == socket.AF_INET6:
        prefix = 128
        if addr.netmask:
            mask = ipaddress.IPv6Address(addr.netmask.split("%")[0].split("/")[0])
            prefix = bin(int(mask)).count("1")
        return ipaddress.ip_network((host, prefix), strict=False)
    return None


def _interface_networks(ifname: str) -> list[Network]:
    try:
        interfaces = psutil.net_if_addrs()
    except OSError as exc:
        raise ValueError(str(exc)) from exc
    networks = []
    for name, addrs in interfaces.items():
        if ifname != "*" and ifname != name:
            continue
        for addr in addrs:
            network = _interface_network(addr)
            if network is not None:
                networks.append(network)
    return networks


def _address_network(rule: str) -> Network:
    bits: int | None = None
    address = rule
    pos = rule.rfind("/")
    if pos >= 0:
        bits = _atoi(rule[pos + 1:])
        address = rule[:pos]
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        raise ValueError(f"not an IP address: {address}") from None
    width = ip.max_prefixlen
    if bits is None or bits == -1:
        bits = width
    if bits > width:
        raise ValueError(f"prefix length {bits} exceeds address width {width}")
    return ipaddress.ip_network((ip, max(bits, 0)), strict=False)


@dataclass(frozen=True)
class AccessRule:
    """An allow or deny rule covering one or more networks."""

    kind: RuleKind
    rule: str
    networks: tuple[Network, ...]

    @classmethod
    def parse(cls, line: str) -> "AccessRule":
        """Parse "allow|deny <address>[/<bits>]" or "allow|deny local on <if>|*"."""
        parts = line.split(None, 1)
        word = parts[0] if parts else ""
        try:
            kind = RuleKind(word.lower())
        except ValueError:
            raise ValueError(f'expected "allow" or "deny", got "{word}"') from None
        rule = parts[1] if len(parts) > 1 else ""

        if rule.startswith(_IF_KEYWORDS):
            ifname = rule[len(_IF_KEYWORDS):]
            if not ifname:
                raise ValueError("expected an interface name, or *")
            networks = _interface_networks(ifname)
            if not networks:
                raise ValueError(f'"{ifname}" does not match any network interfaces')
        else:
            networks = [_address_network(rule)]
        return cls(kind, rule, tuple(networks))

    def match(self, address) -> RuleKind | None:
        """Return the rule's kind if the address lies in one of its networks."""
        ip = _to_ip(address)
        if ip is None:
            return None
        for network in self.networks:
            if ip.version == network.version and ip in network:
                verb = "allowing" if self.kind is RuleKind.ALLOW else "denying"
                log.info("%s %s, matching rule: %s", verb, ip, self.rule)
                return self.kind
        return None


class AccessFile:
    """Ordered access rules; the first matching rule decides."""

    def __init__(self, path: str | None = None) -> None:
        self.rules: list[AccessRule] = []
        self.errors: list[str] = []
        if not path:
            return
        try:
            file = open(path, encoding="utf-8", errors="replace")
        except OSError:
            return
        log.info("reading access rules from file %s", path)
        with file:
            for raw in file:
                line = raw.strip()
                if not line or line.startswith("#"):
                    continue
                try:
                    self.rules.append(AccessRule.parse(line))
                except ValueError as exc:
                    log.error("%s", exc)
                    self.errors.append(f"illegal entry in access file: {line}")

    def is_allowed(self, address) -> bool:
        if not self.rules:
            log.info("allowing %s: access file is empty", address)
            return True
        for rule in self.rules:
            result = rule.match(address)
            if result is RuleKind.ALLOW:
                return True
            if result is RuleKind.DENY:
                return False
        log.info("denying %s: no rules matched", address)
        return False