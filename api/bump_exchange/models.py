from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

SHARING_CATEGORIES = ("All", "Personal", "Work")
STATUS_WAITING = "waiting"
STATUS_MATCHED = "matched"
ROLE_A = "A"
ROLE_B = "B"


@dataclass
class Location:
    """Coarse location derived from the caller's IP address."""

    ip: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    network: str | None = None
    is_vpn: bool = False
    confidence: str = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Location:
        data = data or {}
        return cls(
            ip=data.get("ip"),
            city=data.get("city"),
            state=data.get("state"),
            country=data.get("country"),
            network=data.get("network"),
            is_vpn=bool(data.get("is_vpn", False)),
            confidence=str(data.get("confidence") or "unknown"),
        )


@dataclass
class PendingExchange:
    session_id: str
    user_id: str
    profile: dict[str, Any]
    server_timestamp: int
    magnitude: float
    location: Location = field(default_factory=Location)
    sharing_category: str = "All"
    client_timestamp: int | None = None
    vector_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "profile": self.profile,
            "server_timestamp": self.server_timestamp,
            "client_timestamp": self.client_timestamp,
            "magnitude": self.magnitude,
            "vector_hash": self.vector_hash,
            "location": self.location.to_dict(),
            "sharing_category": self.sharing_category,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingExchange:
        return cls(
            session_id=str(data["session_id"]),
            user_id=str(data["user_id"]),
            profile=dict(data.get("profile") or {}),
            server_timestamp=int(data["server_timestamp"]),
            client_timestamp=data.get("client_timestamp"),
            magnitude=float(data.get("magnitude") or 0.0),
            vector_hash=data.get("vector_hash"),
            location=Location.from_dict(data.get("location")),
            sharing_category=str(data.get("sharing_category") or "All"),
        )


@dataclass
class MatchResult:
    """Counterpart returned by the atomic store-and-match step."""

    session_id: str
    exchange: PendingExchange


@dataclass
class ExchangeMatch:
    token: str
    session_a: str
    profile_a: dict[str, Any]
    sharing_category_a: str
    created_at: int
    status: str = STATUS_WAITING
    session_b: str | None = None
    profile_b: dict[str, Any] | None = None
    sharing_category_b: str | None = None
    matched_at: int | None = None
    scan_status: str | None = None
    preview_accessed_at: int | None = None

    @property
    def is_waiting(self) -> bool:
        return self.status == STATUS_WAITING and self.session_b is None

    def user_id_for(self, role: str) -> str | None:
        profile = self.profile_a if role == ROLE_A else self.profile_b
        if not profile:
            return None
        value = profile.get("user_id")
        return str(value) if value else None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExchangeMatch:
        return cls(
            token=str(data["token"]),
            session_a=str(data["session_a"]),
            profile_a=dict(data.get("profile_a") or {}),
            sharing_category_a=str(data.get("sharing_category_a") or "All"),
            created_at=int(data.get("created_at") or 0),
            status=str(data.get("status") or STATUS_WAITING),
            session_b=data.get("session_b"),
            profile_b=data.get("profile_b"),
            sharing_category_b=data.get("sharing_category_b"),
            matched_at=data.get("matched_at"),
            scan_status=data.get("scan_status"),
            preview_accessed_at=data.get("preview_accessed_at"),
        )
