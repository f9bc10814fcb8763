"""Unit tests for normalization and record helpers in tailscale_cloudflare.cli.

Tests cover:
- IPv4 filtering (ipv4_addresses)
- Identifier derivation (device_identifier)
- Desired mapping construction (build_desired_mapping)
- Suffix and grouping helpers (record_suffix, strip_record_suffix, group_records_by_name)
- Boolean parsing (_parse_bool)
"""

import logging

import pytest

from tailscale_cloudflare.cli import (
    Device,
    DNSRecord,
    _parse_bool,
    build_desired_mapping,
    device_identifier,
    group_records_by_name,
    ipv4_addresses,
    record_suffix,
    strip_record_suffix,
    zone_name_from_records,
)

TAILNET = "corp.example"

# =============================================================================
# IPv4 Filtering Tests
# =============================================================================


def test_ipv4_addresses_keeps_ipv4_in_order() -> None:
    assert ipv4_addresses(["100.64.0.2", "fd7a:115c:a1e0::2", "10.0.0.1"]) == [
        "100.64.0.2",
        "10.0.0.1",
    ]


def test_ipv4_addresses_skips_unparseable_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    log = logging.getLogger("tests.utils")
    with caplog.at_level(logging.WARNING, logger="tests.utils"):
        result = ipv4_addresses(["not-an-ip", "100.64.0.2", "300.1.1.1"], log)

    assert result == ["100.64.0.2"]
    assert "not-an-ip" in caplog.text
    assert "300.1.1.1" in caplog.text


def test_ipv4_addresses_drops_ipv6_quietly(caplog: pytest.LogCaptureFixture) -> None:
    log = logging.getLogger("tests.utils")
    with caplog.at_level(logging.WARNING, logger="tests.utils"):
        assert ipv4_addresses(["fd7a:115c:a1e0::2"], log) == []

    assert caplog.text == ""


def test_ipv4_addresses_empty() -> None:
    assert ipv4_addresses([]) == []


# =============================================================================
# Identifier Tests
# =============================================================================


def test_device_identifier_strips_tailnet_suffix() -> None:
    device = Device(name=f"laptop.{TAILNET}", hostname="MacBook-Pro")
    assert device_identifier(device, TAILNET) == "laptop"


def test_device_identifier_only_strips_trailing_suffix() -> None:
    device = Device(name=f"corp.example.box.{TAILNET}", hostname="box")
    assert device_identifier(device, TAILNET) == "corp.example.box"


def test_device_identifier_leaves_foreign_names_alone() -> None:
    device = Device(name="hello.ipn.dev", hostname="hello")
    assert device_identifier(device, TAILNET) == "hello.ipn.dev"


def test_device_identifier_hostname_mode_uses_hostname_verbatim() -> None:
    device = Device(name=f"laptop-1.{TAILNET}", hostname="MacBook-Pro")
    assert device_identifier(device, TAILNET, use_hostnames=True) == "MacBook-Pro"


# =============================================================================
# Desired Mapping Tests
# =============================================================================


def test_build_desired_mapping_includes_authorized_devices() -> None:
    devices = [
        Device(name=f"laptop.{TAILNET}", hostname="mbp", addresses=("100.64.0.2",), authorized=True),
        Device(name=f"phone.{TAILNET}", hostname="ios", addresses=("100.64.0.3",), authorized=True),
    ]

    assert build_desired_mapping(devices, TAILNET) == {
        "laptop": ["100.64.0.2"],
        "phone": ["100.64.0.3"],
    }


def test_build_desired_mapping_excludes_unauthorized_devices() -> None:
    devices = [
        Device(name=f"laptop.{TAILNET}", hostname="mbp", addresses=("100.64.0.2",), authorized=False),
    ]

    assert build_desired_mapping(devices, TAILNET) == {}


def test_build_desired_mapping_excludes_shared_hello_devices() -> None:
    devices = [
        Device(name="hello.ipn.dev", hostname="hello", addresses=("100.101.102.103",), authorized=True),
        Device(
            name="hello.tailscale.com", hostname="hello", addresses=("100.101.102.103",), authorized=True
        ),
    ]

    assert build_desired_mapping(devices, TAILNET) == {}


def test_build_desired_mapping_skips_nameless_devices() -> None:
    devices = [Device(name="", hostname="", addresses=("100.64.0.2",), authorized=True)]

    assert build_desired_mapping(devices, TAILNET) == {}


def test_build_desired_mapping_keeps_device_without_ipv4() -> None:
    devices = [
        Device(name=f"v6.{TAILNET}", hostname="v6", addresses=("fd7a::1",), authorized=True),
    ]

    assert build_desired_mapping(devices, TAILNET) == {"v6": []}


def test_build_desired_mapping_last_duplicate_wins(caplog: pytest.LogCaptureFixture) -> None:
    devices = [
        Device(name=f"a.{TAILNET}", hostname="box", addresses=("100.64.0.2",), authorized=True),
        Device(name=f"b.{TAILNET}", hostname="box", addresses=("100.64.0.3",), authorized=True),
    ]
    log = logging.getLogger("tests.utils")

    with caplog.at_level(logging.WARNING, logger="tests.utils"):
        desired = build_desired_mapping(devices, TAILNET, use_hostnames=True, log=log)

    assert desired == {"box": ["100.64.0.3"]}
    assert "multiple Tailscale devices named 'box'" in caplog.text


def test_build_desired_mapping_unauthorized_duplicate_does_not_override() -> None:
    devices = [
        Device(name=f"a.{TAILNET}", hostname="box", addresses=("100.64.0.2",), authorized=True),
        Device(name=f"b.{TAILNET}", hostname="box", addresses=("100.64.0.3",), authorized=False),
    ]

    assert build_desired_mapping(devices, TAILNET, use_hostnames=True) == {"box": ["100.64.0.2"]}


# =============================================================================
# Record Helper Tests
# =============================================================================


def test_record_suffix_with_subdomain() -> None:
    assert record_suffix("example.com", "ts") == "ts.example.com"


def test_record_suffix_without_subdomain() -> None:
    assert record_suffix("example.com", "") == "example.com"


def test_strip_record_suffix() -> None:
    assert strip_record_suffix("laptop.ts.example.com", "ts.example.com") == "laptop"
    assert strip_record_suffix("ts.example.com", "ts.example.com") is None
    assert strip_record_suffix("laptopts.example.com", "ts.example.com") is None
    assert strip_record_suffix("www.example.com", "ts.example.com") is None


def test_group_records_by_name() -> None:
    records = [
        DNSRecord(id="1", name="a.example.com", content="10.0.0.1"),
        DNSRecord(id="2", name="b.example.com", content="10.0.0.2"),
        DNSRecord(id="3", name="a.example.com", content="10.0.0.3"),
    ]

    grouped = group_records_by_name(records)

    assert [r.id for r in grouped["a.example.com"]] == ["1", "3"]
    assert [r.id for r in grouped["b.example.com"]] == ["2"]


def test_zone_name_from_records_uses_first_record() -> None:
    records = [
        DNSRecord(id="1", name="a.example.com", content="10.0.0.1", zone_name="example.com"),
    ]
    assert zone_name_from_records(records) == "example.com"


# =============================================================================
# Boolean Parsing Tests
# =============================================================================


def test_parse_bool_true_values() -> None:
    """Various truthy strings parse as True."""
    for value in ("1", "true", "TRUE", "yes", "y", "on", " On "):
        assert _parse_bool(value) is True


def test_parse_bool_false_values() -> None:
    for value in ("0", "false", "no", "off", ""):
        assert _parse_bool(value) is False


def test_parse_bool_passthrough_and_default() -> None:
    assert _parse_bool(True) is True
    assert _parse_bool(False) is False
    assert _parse_bool(None) is False
    assert _parse_bool(None, default=True) is True
