"""
IP geolocation for exchange matching.

Looks the caller's IP up against an ipinfo-style JSON API and reduces the
answer to a coarse Location (city/state/country, network block, VPN flag).
Results are cached in the exchange store. Any failure yields a location that
still participates in matching through its network block.
"""

from __future__ import annotations

import ipaddress
import json
import logging
from typing import Any

import httpx

from ..config import GEO_CACHE_TTL_SECONDS, GEO_TIMEOUT_SECONDS, IPINFO_TOKEN, IPINFO_URL
from ..models import Location
from ..store.base import ExchangeStore, geo_key

logger = logging.getLogger(__name__)

VPN_PROVIDERS = (
    "cloudflare",
    "vpn",
    "proxy",
    "hosting",
    "datacenter",
    "amazon",
    "google cloud",
    "microsoft",
    "digital ocean",
    "linode",
)
CGNAT_NETWORK = ipaddress.ip_network("100.64.0.0/10")


def network_block(ip: str | None) -> str | None:
    if not ip:
        return None
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return None
    if addr.version == 4:
        return str(addr).split(".")[0]
    return ":".join(addr.exploded.split(":")[:2])


def unknown_location(ip: str | None) -> Location:
    block = network_block(ip)
    return Location(ip=ip, network=block, confidence="network" if block else "unknown")


def is_private_address(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return True
    if addr.version == 4 and addr in CGNAT_NETWORK:
        return False
    return addr.is_private or addr.is_loopback or addr.is_link_local


def detect_vpn(data: dict[str, Any]) -> bool:
    if data.get("vpn") is True or data.get("hosting") is True or data.get("tor") is True:
        return True
    if data.get("bogon") is True:
        return True

    # Tailscale and carrier-grade NAT share 100.64.0.0/10
    try:
        addr = ipaddress.ip_address(str(data.get("ip") or ""))
        if addr.version == 4 and addr in CGNAT_NETWORK:
            return True
    except ValueError:
        pass

    org = str(data.get("org") or "").lower()
    if org:
        return any(provider in org for provider in VPN_PROVIDERS)
    return False


def process_location_data(data: dict[str, Any]) -> Location:
    ip = str(data.get("ip") or "") or None
    city = str(data.get("city") or "").strip() or None
    state = str(data.get("region") or "").strip() or None
    country = str(data.get("country") or "").strip() or None
    is_vpn = detect_vpn(data)

    if is_vpn:
        confidence = "vpn"
    elif city and state:
        confidence = "city"
    elif state:
        confidence = "state"
    elif network_block(ip):
        confidence = "network"
    else:
        confidence = "unknown"

    return Location(
        ip=ip,
        city=city,
        state=state,
        country=country,
        network=network_block(ip),
        is_vpn=is_vpn,
        confidence=confidence,
    )


class IpGeolocator:
    def __init__(
        self,
        store: ExchangeStore | None = None,
        *,
        base_url: str = IPINFO_URL,
        api_token: str = IPINFO_TOKEN,
        timeout: float = GEO_TIMEOUT_SECONDS,
        cache_ttl_seconds: int = GEO_CACHE_TTL_SECONDS,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.store = store
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout = timeout
        self.cache_ttl_seconds = cache_ttl_seconds
        self.http_client = http_client

    def _read_cache(self, ip: str) -> Location | None:
        if self.store is None:
            return None
        try:
            raw = self.store.get(geo_key(ip))
        except Exception as exc:
            logger.warning("[geo] cache read failed for %s: %s", ip, exc)
            return None
        if not raw:
            return None
        return Location.from_dict(json.loads(raw))

    def _write_cache(self, ip: str, location: Location) -> None:
        if self.store is None:
            return
        try:
            self.store.set(geo_key(ip), json.dumps(location.to_dict()), self.cache_ttl_seconds)
        except Exception as exc:
            logger.warning("[geo] cache write failed for %s: %s", ip, exc)

    def _fetch(self, ip: str) -> dict[str, Any]:
        params = {"token": self.api_token} if self.api_token else None
        headers = {"Accept": "application/json", "User-Agent": "bump-exchange/1.0"}
        url = f"{self.base_url}/{ip}/json"
        if self.http_client is not None:
            resp = self.http_client.get(url, params=params, headers=headers, timeout=self.timeout)
        else:
            resp = httpx.get(url, params=params, headers=headers, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError("unexpected geolocation payload")
        data.setdefault("ip", ip)
        return data

    def lookup(self, ip: str | None) -> Location:
        if not ip or is_private_address(ip):
            return unknown_location(ip)

        cached = self._read_cache(ip)
        if cached is not None:
            return cached

        try:
            data = self._fetch(ip)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("[geo] lookup failed for %s, using network fallback: %s", ip, exc)
            return unknown_location(ip)

        location = process_location_data(data)
        logger.debug(
            "[geo] %s -> city=%s state=%s vpn=%s confidence=%s",
            ip,
            location.city,
            location.state,
            location.is_vpn,
            location.confidence,
        )
        self._write_cache(ip, location)
        return location
