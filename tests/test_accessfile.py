import ipaddress

import pytest

from airsane.accessfile import AccessFile, AccessRule, RuleKind


def _write(tmp_path, text):
    path = tmp_path / "access.conf"
    path.write_text(text)
    return str(path)


def test_missing_path_allows_everything():
    access = AccessFile()
    assert access.rules == []
    assert access.is_allowed("10.1.2.3")


def test_nonexistent_file_allows_everything(tmp_path):
    access = AccessFile(str(tmp_path / "nope.conf"))
    assert access.errors == []
    assert access.is_allowed(("192.0.2.1", 80))


def test_comments_and_blank_lines_only(tmp_path):
    access = AccessFile(_write(tmp_path, "# comment\n\n   \n"))
    assert access.rules == []
    assert access.is_allowed("198.51.100.7")


def test_first_matching_rule_wins(tmp_path):
    path = _write(
        tmp_path,
        "deny 192.168.1.5\nallow 192.168.1.0/24\n  ALLOW ::1  \n",
    )
    access = AccessFile(path)
    assert len(access.rules) == 3
    assert not access.is_allowed("192.168.1.5")
    assert access.is_allowed("192.168.1.77")
    assert access.is_allowed(("::1", 8080, 0, 0))
    assert not access.is_allowed("192.168.2.1")


def test_no_match_denies(tmp_path):
    access = AccessFile(_write(tmp_path, "allow 10.0.0.0/8\n"))
    assert not access.is_allowed(ipaddress.ip_address("172.16.0.1"))


def test_illegal_entries_are_reported(tmp_path):
    access = AccessFile(_write(tmp_path, "bogus line\nallow not-an-ip\nallow 10.0.0.1\n"))
    assert access.errors == [
        "illegal entry in access file: bogus line",
        "illegal entry in access file: allow not-an-ip",
    ]
    assert len(access.rules) == 1


def test_parse_kind_case_insensitive():
    rule = AccessRule.parse("DeNy 10.0.0.0/8")
    assert rule.kind is RuleKind.DENY
    assert rule.rule == "10.0.0.0/8"


def test_parse_rejects_unknown_kind():
    with pytest.raises(ValueError):
        AccessRule.parse("permit 10.0.0.1")


def test_parse_rejects_oversized_prefix():
    with pytest.raises(ValueError):
        AccessRule.parse("allow 10.0.0.1/33")


def test_parse_rejects_unknown_interface():
    with pytest.raises(ValueError):
        AccessRule.parse("allow local on no-such-interface-xyz")


def test_single_address_matches_only_itself():
    rule = AccessRule.parse("allow 203.0.113.9")
    assert rule.match("203.0.113.9") is RuleKind.ALLOW
    assert rule.match("203.0.113.10") is None


def test_zero_prefix_matches_whole_family():
    rule = AccessRule.parse("deny 0.0.0.0/0")
    assert rule.match("8.8.4.4") is RuleKind.DENY
    assert rule.match("2001:db8::1") is None


def test_non_numeric_prefix_counts_as_zero():
    rule = AccessRule.parse("allow 10.0.0.1/abc")
    assert rule.match("192.0.2.200") is RuleKind.ALLOW


def test_ipv6_network():
    rule = AccessRule.parse("allow 2001:db8::/32")
    assert rule.match("[2001:db8:1::5]") is RuleKind.ALLOW
    assert rule.match("2001:db9::1") is None
    assert rule.match("10.0.0.1") is None


def test_non_ip_address_does_not_match():
    rule = AccessRule.parse("allow 0.0.0.0/0")
    assert rule.match("/run/airsane.sock") is None
    assert rule.match(None) is None