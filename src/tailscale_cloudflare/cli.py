#!/usr/bin/env python3
"""tailscale2cloudflare - Tailscale device DNS synchronization

Synchronizes a Tailscale device list with a Cloudflare (sub)domain so that every
authorized device resolves as ``<machine-name>.<subdomain>.<zone>``. Meant to be
run periodically (cron, systemd timer, Kubernetes CronJob), one pass per run:

    1. GET  https://api.tailscale.com/api/v2/tailnet/:tailnet/devices?fields=default
    2. GET  https://api.cloudflare.com/client/v4/zones/:zone/dns_records?type=A&proxied=false
    3. POST https://api.cloudflare.com/client/v4/zones/:zone/dns_records        (new devices)
    4. DELETE https://api.cloudflare.com/client/v4/zones/:zone/dns_records/:id  (removed devices)

Only A records whose name ends with ``.<subdomain>.<zone>`` (or ``.<zone>`` when
no subdomain is set) are ever deleted. Records outside that suffix are left alone.

Settings (flag > environment variable > config file > default):

    Tailscale:
        --tailscale-key         TAILSCALE_KEY          Tailscale API key (tskey-...)
        --tailscale-tailnet     TAILSCALE_TAILNET      Tailscale tailnet name

    Cloudflare:
        --cloudflare-token      CLOUDFLARE_TOKEN       Cloudflare API token
        --cloudflare-zone       CLOUDFLARE_ZONE        Cloudflare zone ID
        --cloudflare-subdomain  CLOUDFLARE_SUBDOMAIN   Subdomain to manage, without
                                                       leading/trailing dots. Blank
                                                       means the zone apex.
        --cloudflare-zone-name  CLOUDFLARE_ZONE_NAME   Zone name (e.g. example.com).
                                                       Optional; read off the existing
                                                       records when unset, which fails
                                                       for a zone without A records.

    Runtime:
        -n, --dry-run           DRY_RUN                Log the computed changes only
        -v, --verbose           VERBOSE                Enable debug-level logging
        --sync-hostnames        SYNC_HOSTNAMES         Use device hostnames instead of
                                                       unique machine names (old behavior)
        --config                TAILSCALE2CLOUDFLARE_CONFIG
                                                       Optional YAML file using the flag
                                                       names as keys, e.g.:
                                                         tailscale-tailnet: example.com
                                                         cloudflare-zone: 0123abcd
                                                         cloudflare-subdomain: ts
"""

from __future__ import annotations

import argparse
import ipaddress
import json
import logging
import os
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import requests
import yaml
from requests.auth import HTTPBasicAuth

# =============================================================================
# Constants
# =============================================================================

TAILSCALE_API_URL = "https://api.tailscale.com/api/v2"
CLOUDFLARE_API_URL = "https://api.cloudflare.com/client/v4"

RECORD_TYPE = "A"
# 1 is Cloudflare's "automatic" TTL
RECORD_TTL = 1
RECORDS_PAGE_SIZE = 100
REQUEST_TIMEOUT_SECONDS = 30

# Hosts Tailscale shares into every tailnet
IGNORED_IDENTIFIERS = frozenset({"hello.ipn.dev", "hello.tailscale.com"})

CONFIG_PATH_ENV = "TAILSCALE2CLOUDFLARE_CONFIG"

REQUIRED_SETTINGS = {
    "tailscale-key": "Tailscale API key",
    "tailscale-tailnet": "Tailscale tailnet",
    "cloudflare-token": "Cloudflare API token",
    "cloudflare-zone": "Cloudflare zone ID",
}
BOOL_SETTINGS = ("dry-run", "verbose", "sync-hostnames")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)

# =============================================================================
# Errors
# =============================================================================


class SyncError(Exception):
    """Base class for errors that abort a synchronization run."""


class ConfigurationError(SyncError):
    """Raised when required settings are missing or malformed."""


class TransportError(SyncError):
    """Raised when a request could not be sent or its response not read."""


class ProtocolError(SyncError):
    """Raised when a provider answers with a non-success status code."""

    def __init__(self, action: str, status_code: int, body: str):
        super().__init__(f"non-success response to {action}: {status_code}: {body}")
        self.action = action
        self.status_code = status_code
        self.body = body


class ParseError(SyncError):
    """Raised when a response body does not have the expected shape."""


class AmbiguousRecordError(SyncError):
    """Raised when several records share a name the reconciler has to manage."""

    def __init__(self, record_name: str, record_ids: Sequence[str]):
        super().__init__(
            f"found {len(record_ids)} records named {record_name} "
            f"({', '.join(record_ids)}); multi-value records are not supported"
        )
        self.record_name = record_name
        self.record_ids = list(record_ids)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class Device:
    """A Tailscale device as listed by the devices API."""

    name: str
    hostname: str
    addresses: Tuple[str, ...] = ()
    authorized: bool = False


@dataclass(frozen=True)
class DNSRecord:
    """A Cloudflare DNS record."""

    id: str
    name: str
    content: str
    type: str = RECORD_TYPE
    zone_name: str = ""


@dataclass(frozen=True)
class ChangeSet:
    """Result of one reconciliation pass.

    ``to_create`` maps record names to the addresses to create records for,
    ``to_update`` maps record ids to the addresses they should hold and
    ``to_delete`` maps record names to the ids of the records to delete.
    """

    to_create: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    to_update: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    to_delete: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for attr in ("to_create", "to_update", "to_delete"):
            frozen = {key: tuple(values) for key, values in getattr(self, attr).items()}
            object.__setattr__(self, attr, MappingProxyType(frozen))

    def has_changes(self) -> bool:
        """Return True when applying this change set issues at least one call."""
        return self.mutation_count() > 0

    def mutation_count(self) -> int:
        creates = sum(len(addresses) for addresses in self.to_create.values())
        deletes = sum(len(ids) for ids in self.to_delete.values())
        return creates + deletes

    def as_dict(self) -> Dict[str, Dict[str, List[str]]]:
        return {
            "to_create": {k: list(v) for k, v in sorted(self.to_create.items())},
            "to_update": {k: list(v) for k, v in sorted(self.to_update.items())},
            "to_delete": {k: list(v) for k, v in sorted(self.to_delete.items())},
        }


@dataclass(frozen=True)
class SyncConfig:
    """Resolved settings for one run."""

    tailscale_key: str = field(repr=False)
    tailscale_tailnet: str
    cloudflare_token: str = field(repr=False)
    cloudflare_zone: str
    cloudflare_subdomain: str = ""
    cloudflare_zone_name: str = ""
    dry_run: bool = False
    verbose: bool = False
    sync_hostnames: bool = False


# =============================================================================
# HTTP Helpers
# =============================================================================


def _raise_for_status(response: requests.Response, action: str, max_status: int = 200) -> None:
    """Raise ProtocolError unless the status is within 200..max_status."""
    if not 200 <= response.status_code <= max_status:
        raise ProtocolError(action, response.status_code, response.text)


def _json_body(response: requests.Response, action: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise ParseError(f"error decoding {action} body as JSON: {e}") from e


# =============================================================================
# Device Source Interface and Implementations
# =============================================================================


class DeviceSource(ABC):
    """Abstract base class for device roster sources."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the source name for logging."""
        pass

    @abstractmethod
    def get_devices(self) -> List[Device]:
        """Get every device of the network, authorized or not."""
        pass


class TailscaleDeviceSource(DeviceSource):
    """Tailscale devices API implementation."""

    def __init__(self, api_key: str, tailnet: str, base_url: str = TAILSCALE_API_URL):
        self._url = base_url.rstrip("/")
        self._tailnet = tailnet
        self._session = requests.Session()
        self._session.auth = HTTPBasicAuth(api_key, "")

    @property
    def name(self) -> str:
        return "Tailscale"

    def get_devices(self) -> List[Device]:
        action = "Tailscale devices GET"
        try:
            response = self._session.get(
                f"{self._url}/tailnet/{self._tailnet}/devices",
                params={"fields": "default"},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"error performing {action}: {e}") from e

        _raise_for_status(response, action)
        data = _json_body(response, action)
        logger.debug(f"GET devices body: {json.dumps(data)}")

        if not isinstance(data, dict) or not isinstance(data.get("devices"), list):
            raise ParseError(f"unexpected {action} body: expected an object with a 'devices' list")

        devices: List[Device] = []
        for item in data["devices"]:
            if not isinstance(item, dict):
                raise ParseError(f"unexpected device entry in {action} body: {item!r}")
            addresses = item.get("addresses") or []
            if not isinstance(addresses, list):
                raise ParseError(f"unexpected addresses for device {item.get('name')!r}: {addresses!r}")
            devices.append(
                Device(
                    name=str(item.get("name") or ""),
                    hostname=str(item.get("hostname") or ""),
                    addresses=tuple(str(a) for a in addresses),
                    authorized=item.get("authorized") is True,
                )
            )
        return devices


# =============================================================================
# DNS Provider Interface and Implementations
# =============================================================================


class DNSProvider(ABC):
    """Abstract base class for DNS providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name for logging."""
        pass

    @abstractmethod
    def get_records(self) -> List[DNSRecord]:
        """Get the non-proxied A records of the zone."""
        pass

    @abstractmethod
    def create_record(self, name: str, content: str) -> None:
        """Create a single-address A record."""
        pass

    @abstractmethod
    def delete_record(self, record_id: str) -> None:
        """Delete a record by id."""
        pass


class CloudflareDNSProvider(DNSProvider):
    """Cloudflare v4 API implementation."""

    def __init__(self, token: str, zone_id: str, base_url: str = CLOUDFLARE_API_URL):
        self._records_url = f"{base_url.rstrip('/')}/zones/{zone_id}/dns_records"
        self._session = requests.Session()
        self._session.headers.update(
            {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        )

    @property
    def name(self) -> str:
        return "Cloudflare"

    def get_records(self) -> List[DNSRecord]:
        action = "Cloudflare records GET"
        try:
            response = self._session.get(
                self._records_url,
                params={"per_page": RECORDS_PAGE_SIZE, "proxied": "false", "type": RECORD_TYPE},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"error performing {action}: {e}") from e

        _raise_for_status(response, action)
        data = _json_body(response, action)
        logger.debug(f"GET records body: {json.dumps(data)}")

        result = data.get("result") if isinstance(data, dict) else None
        if not isinstance(result, list):
            raise ParseError(f"unexpected {action} body: expected an object with a 'result' list")

        records: List[DNSRecord] = []
        for item in result:
            if not isinstance(item, dict):
                raise ParseError(f"unexpected record entry in {action} body: {item!r}")
            record_id, name, content = item.get("id"), item.get("name"), item.get("content")
            if not all(isinstance(v, str) for v in (record_id, name, content)):
                raise ParseError(f"record is missing id, name or content: {item!r}")
            records.append(
                DNSRecord(
                    id=record_id,
                    name=name,
                    content=content,
                    type=str(item.get("type") or RECORD_TYPE),
                    zone_name=str(item.get("zone_name") or ""),
                )
            )

        if len(records) >= RECORDS_PAGE_SIZE:
            logger.warning(
                f"Received {len(records)} Cloudflare DNS records - pagination is not supported, "
                "so some records may be missing"
            )
        return records

    def create_record(self, name: str, content: str) -> None:
        action = "Cloudflare record POST"
        body = {
            "type": RECORD_TYPE,
            "name": name,
            "content": content,
            "ttl": RECORD_TTL,
            "proxied": False,
        }
        logger.debug(f"Creating record: {json.dumps(body)}")
        try:
            response = self._session.post(
                self._records_url, json=body, timeout=REQUEST_TIMEOUT_SECONDS
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"error performing {action}: {e}") from e

        _raise_for_status(response, action, max_status=202)
        logger.debug(f"Record POST response: {response.text}")
        logger.info(f"Created DNS record: {name} -> {content}")

    def delete_record(self, record_id: str) -> None:
        action = "Cloudflare record DELETE"
        try:
            response = self._session.delete(
                f"{self._records_url}/{record_id}", timeout=REQUEST_TIMEOUT_SECONDS
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"error performing {action}: {e}") from e

        _raise_for_status(response, action, max_status=202)
        logger.debug(f"Record DELETE response: {response.text}")
        logger.info(f"Deleted DNS record {record_id}")


# =============================================================================
# Name Normalization
# =============================================================================


def ipv4_addresses(addresses: Iterable[str], log: logging.Logger = logger) -> List[str]:
    """Keep the IPv4 literals of ``addresses``, in order.

    Unparseable entries are logged and skipped; IPv6 ones are dropped quietly.
    """
    v4s: List[str] = []
    for address in addresses:
        try:
            parsed = ipaddress.ip_address(address)
        except ValueError as e:
            log.warning(f"Error parsing IP {address!r}, continuing: {e}")
            continue
        if parsed.version == 4:
            v4s.append(address)
    return v4s


def device_identifier(device: Device, tailnet: str, use_hostnames: bool = False) -> str:
    """Return the record label for ``device``.

    The devices API formats ``name`` as ``<machine-name>.<tailnet>``; legacy mode
    uses the OS hostname as-is, which is not unique across a tailnet.
    """
    if use_hostnames:
        return device.hostname
    suffix = f".{tailnet}"
    if tailnet and device.name.endswith(suffix):
        return device.name[: -len(suffix)]
    return device.name


def build_desired_mapping(
    devices: Iterable[Device],
    tailnet: str,
    *,
    use_hostnames: bool = False,
    log: logging.Logger = logger,
) -> Dict[str, List[str]]:
    """Map each authorized device identifier to its IPv4 addresses."""
    desired: Dict[str, List[str]] = {}
    for device in devices:
        identifier = device_identifier(device, tailnet, use_hostnames)
        if not device.authorized:
            log.info(f"Skipping unauthorized device '{identifier}'")
            continue
        if identifier in IGNORED_IDENTIFIERS:
            log.debug(f"Skipping shared device '{identifier}'")
            continue
        if not identifier:
            log.warning(f"Skipping device without a name (addresses: {list(device.addresses)})")
            continue
        if identifier in desired:
            log.warning(
                f"Found multiple Tailscale devices named '{identifier}' - "
                "the last listed device with this name will be used"
            )
        desired[identifier] = ipv4_addresses(device.addresses, log)
    return desired


# =============================================================================
# Record Grouping
# =============================================================================


def zone_name_from_records(records: Sequence[DNSRecord]) -> str:
    """Read the zone name off the fetched records.

    There is no separate zone lookup, so an empty zone cannot be managed.
    """
    if not records:
        raise ConfigurationError(
            "cannot determine the zone name: the zone has no non-proxied A records to read it from"
        )
    zone_name = records[0].zone_name
    if not zone_name:
        raise ConfigurationError(f"record {records[0].id} carries no zone_name")
    return zone_name


def record_suffix(zone_name: str, subdomain: str = "") -> str:
    if subdomain:
        return f"{subdomain}.{zone_name}"
    return zone_name


def strip_record_suffix(record_name: str, suffix: str) -> Optional[str]:
    """Return the identifier part of ``record_name``, or None if it is not managed."""
    tail = f".{suffix}"
    if not record_name.endswith(tail):
        return None
    return record_name[: -len(tail)] or None


def group_records_by_name(
    records: Iterable[DNSRecord], key: Optional[Callable[[str], str]] = None
) -> Dict[str, List[DNSRecord]]:
    records_by_name: Dict[str, List[DNSRecord]] = {}
    for record in records:
        name = key(record.name) if key else record.name
        records_by_name.setdefault(name, []).append(record)
    return records_by_name


# =============================================================================
# Reconciler
# =============================================================================


class Reconciler:
    """Diffs the desired identifier mapping against the zone's records."""

    def __init__(
        self,
        *,
        subdomain: str = "",
        zone_name: str = "",
        log: Optional[logging.Logger] = None,
    ):
        self.subdomain = subdomain
        self.zone_name = zone_name
        self.log = log or logger

    def reconcile(
        self, desired: Mapping[str, Sequence[str]], records: Sequence[DNSRecord]
    ) -> ChangeSet:
        """Compute the change set turning ``records`` into ``desired``.

        Names are matched case-insensitively, as DNS does; Cloudflare hands
        record names back lowercased. A device without IPv4 addresses and
        without a record is queued for creation with no addresses, which
        issues no calls.

        Raises ConfigurationError when no zone name was given and none can be
        read from ``records``, and AmbiguousRecordError when a desired name is
        held by more than one record.
        """
        zone_name = self.zone_name or zone_name_from_records(records)
        suffix = record_suffix(zone_name, self.subdomain).lower()
        records_by_name = group_records_by_name(records, key=str.lower)
        desired_identifiers = {identifier.lower() for identifier in desired}

        to_create: Dict[str, List[str]] = {}
        to_update: Dict[str, List[str]] = {}
        to_delete: Dict[str, List[str]] = {}

        for identifier in sorted(desired):
            addresses = list(desired[identifier])
            record_name = f"{identifier}.{suffix}"
            existing = records_by_name.get(record_name.lower(), [])

            if len(existing) > 1:
                self.log.warning(
                    f"Device '{identifier}' maps to {len(existing)} records named {record_name}"
                )
                raise AmbiguousRecordError(record_name, sorted(r.id for r in existing))

            if not addresses:
                self.log.warning(f"Device '{identifier}' has no IPv4 addresses")

            if not existing:
                to_create[record_name] = addresses
            elif addresses and existing[0].content != addresses[0]:
                to_update[existing[0].id] = addresses

        for lowered_name, named_records in sorted(records_by_name.items()):
            identifier = strip_record_suffix(lowered_name, suffix)
            if identifier is None or identifier in desired_identifiers:
                continue
            for record in named_records:
                to_delete.setdefault(record.name, []).append(record.id)
        for record_ids in to_delete.values():
            record_ids.sort()

        return ChangeSet(to_create=to_create, to_update=to_update, to_delete=to_delete)


# =============================================================================
# Mutation
# =============================================================================


def apply_change_set(
    provider: DNSProvider,
    change_set: ChangeSet,
    *,
    dry_run: bool = False,
    log: logging.Logger = logger,
) -> int:
    """Issue the create and delete calls of ``change_set`` one at a time.

    Returns the number of calls made. The first failing call propagates and
    nothing already applied is rolled back.
    """
    if dry_run:
        log.info(f"Dry run: skipping {change_set.mutation_count()} change(s) to {provider.name}")
        return 0

    calls = 0
    for record_name, addresses in sorted(change_set.to_create.items()):
        for address in addresses:
            provider.create_record(record_name, address)
            calls += 1
    for record_name, record_ids in sorted(change_set.to_delete.items()):
        for record_id in record_ids:
            log.debug(f"Deleting {record_name} ({record_id})")
            provider.delete_record(record_id)
            calls += 1
    return calls


# =============================================================================
# Core Syncer
# =============================================================================


class TailscaleCloudflareSyncer:
    def __init__(
        self,
        *,
        device_source: DeviceSource,
        dns_provider: DNSProvider,
        tailnet: str,
        subdomain: str = "",
        zone_name: str = "",
        use_hostnames: bool = False,
        dry_run: bool = False,
        log: Optional[logging.Logger] = None,
    ):
        self.device_source = device_source
        self.dns_provider = dns_provider
        self.tailnet = tailnet
        self.subdomain = subdomain
        self.zone_name = zone_name
        self.use_hostnames = use_hostnames
        self.dry_run = dry_run
        self.log = log or logger

    def sync_once(self) -> ChangeSet:
        devices = self.device_source.get_devices()
        self.log.debug(f"Fetched {len(devices)} device(s) from {self.device_source.name}")
        desired = build_desired_mapping(
            devices, self.tailnet, use_hostnames=self.use_hostnames, log=self.log
        )
        self.log.debug(f"IPv4 mappings: {json.dumps(desired, sort_keys=True)}")

        records = self.dns_provider.get_records()
        self.log.debug(f"Fetched {len(records)} record(s) from {self.dns_provider.name}")

        reconciler = Reconciler(subdomain=self.subdomain, zone_name=self.zone_name, log=self.log)
        change_set = reconciler.reconcile(desired, records)
        self.log.info(f"Queued {self.dns_provider.name} changes: {json.dumps(change_set.as_dict())}")
        if change_set.to_update:
            self.log.warning(
                f"Not applying {len(change_set.to_update)} record update(s): "
                "records whose address changed must be deleted by hand to be recreated"
            )

        calls = apply_change_set(
            self.dns_provider, change_set, dry_run=self.dry_run, log=self.log
        )
        if not self.dry_run:
            self.log.info(f"Applied {calls} change(s) to {self.dns_provider.name}")
        return change_set


# =============================================================================
# Configuration
# =============================================================================


def _parse_bool(value: Any, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_name(setting: str) -> str:
    return setting.upper().replace("-", "_")


def load_config_file(path: str) -> Dict[str, Any]:
    """Load a YAML settings file keyed by flag name."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping")
    # accept tailscale_key as well as tailscale-key
    return {str(k).strip().replace("_", "-"): v for k, v in data.items()}


def validate_subdomain(subdomain: str) -> None:
    if subdomain.startswith(".") or subdomain.endswith("."):
        raise ConfigurationError(
            f"remove '.' at the start/end of cloudflare-subdomain ({subdomain!r})"
        )


def load_config(
    args: argparse.Namespace, environ: Optional[Mapping[str, str]] = None
) -> SyncConfig:
    """Resolve every setting from flags, then environment, then config file."""
    if environ is None:
        environ = os.environ

    config_path = getattr(args, "config", None) or environ.get(CONFIG_PATH_ENV, "")
    file_values = load_config_file(config_path) if config_path else {}

    def resolve(setting: str) -> Any:
        flag_value = getattr(args, setting.replace("-", "_"), None)
        if flag_value is not None:
            return flag_value
        env_value = environ.get(_env_name(setting))
        if env_value:
            return env_value
        return file_values.get(setting)

    values: Dict[str, Any] = {}
    missing: List[str] = []
    for setting, human_name in REQUIRED_SETTINGS.items():
        value = str(resolve(setting) or "").strip()
        if not value:
            missing.append(f"{human_name} (--{setting} / {_env_name(setting)})")
        values[setting] = value
    if missing:
        raise ConfigurationError(
            f"must specify via environment variable or flag: {', '.join(missing)}"
        )

    # Cloudflare reports record names lowercased
    subdomain = str(resolve("cloudflare-subdomain") or "").strip().lower()
    validate_subdomain(subdomain)
    zone_name = str(resolve("cloudflare-zone-name") or "").strip().rstrip(".").lower()

    for setting in BOOL_SETTINGS:
        values[setting] = _parse_bool(resolve(setting))

    return SyncConfig(
        tailscale_key=values["tailscale-key"],
        tailscale_tailnet=values["tailscale-tailnet"],
        cloudflare_token=values["cloudflare-token"],
        cloudflare_zone=values["cloudflare-zone"],
        cloudflare_subdomain=subdomain,
        cloudflare_zone_name=zone_name,
        dry_run=values["dry-run"],
        verbose=values["verbose"],
        sync_hostnames=values["sync-hostnames"],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tailscale2cloudflare",
        description="Synchronizes Tailscale device lists with a Cloudflare (sub)domain.",
        epilog="Every flag can also be set through the upper-cased environment variable, "
        "e.g. TAILSCALE_KEY for --tailscale-key.",
    )
    parser.add_argument("--config", help="Optional YAML file with settings keyed by flag name")
    parser.add_argument("--tailscale-key", help="Tailscale API key, usually looks like tskey-deadbeef")
    parser.add_argument("--tailscale-tailnet", help="Tailscale tailnet name")
    parser.add_argument("--cloudflare-token", help="Cloudflare API token")
    parser.add_argument("--cloudflare-zone", help="Cloudflare zone ID")
    parser.add_argument(
        "--cloudflare-subdomain",
        help="Cloudflare subdomain. Blank means that this will update the apex.",
    )
    parser.add_argument(
        "--cloudflare-zone-name",
        help="Cloudflare zone name, e.g. example.com. Read off the existing records when unset.",
    )
    parser.add_argument(
        "-n",
        "--dry-run",
        action="store_true",
        default=None,
        help="Perform a dry run instead of updating",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", default=None, help="Enable debug-level logging"
    )
    parser.add_argument(
        "--sync-hostnames",
        action="store_true",
        default=None,
        help="Retain old behavior of syncing hostnames instead of unique machine names",
    )
    return parser


# =============================================================================
# Main
# =============================================================================


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def create_device_source(config: SyncConfig) -> DeviceSource:
    return TailscaleDeviceSource(config.tailscale_key, config.tailscale_tailnet)


def create_dns_provider(config: SyncConfig) -> DNSProvider:
    return CloudflareDNSProvider(config.cloudflare_token, config.cloudflare_zone)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args)
    except ConfigurationError as e:
        configure_logging()
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    configure_logging(config.verbose)
    subdomain = config.cloudflare_subdomain or "(apex)"
    logger.info(
        f"tailscale2cloudflare: tailnet {config.tailscale_tailnet} -> "
        f"zone {config.cloudflare_zone}, subdomain {subdomain}"
    )
    if config.dry_run:
        logger.info("Dry run: no records will be changed")

    syncer = TailscaleCloudflareSyncer(
        device_source=create_device_source(config),
        dns_provider=create_dns_provider(config),
        tailnet=config.tailscale_tailnet,
        subdomain=config.cloudflare_subdomain,
        zone_name=config.cloudflare_zone_name,
        use_hostnames=config.sync_hostnames,
        dry_run=config.dry_run,
        log=logger,
    )

    try:
        syncer.sync_once()
    except SyncError as e:
        logger.error(f"Error synchronizing Tailscale -> Cloudflare records: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
