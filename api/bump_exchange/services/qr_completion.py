"""
QR code path: one side displays a code, the other scans it.

Displaying creates a one-sided ``waiting`` ExchangeMatch. The first signed-in
scanner that is not the displayer turns it into a ``matched`` record. The
scan re-reads the record right before writing and commits with
compare-and-set, so a second scanner gets ALREADY_SCANNED instead of
overwriting the first.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Callable

from ..models import ROLE_A, ROLE_B, STATUS_MATCHED, ExchangeMatch
from .cleanup import CleanupService
from .errors import Forbidden, NotFoundOrExpired, RaceLost, ValidationError, WaitingForScan
from .match_store import MatchStore, token_prefix
from .profile_filter import build_preview_profile, filter_profile_by_category

logger = logging.getLogger(__name__)

ProfileLookup = Callable[[str], dict[str, Any] | None]

ALREADY_SCANNED_MESSAGE = "This QR code was already scanned by someone else"
COMPLETE_ATTEMPTS = 2


@dataclass
class PairedProfile:
    token: str
    role: str
    profile: dict[str, Any]
    matched_at: int | None


class QRCompletionService:
    def __init__(self, matches: MatchStore, cleanup: CleanupService, profiles: ProfileLookup) -> None:
        self.matches = matches
        self.cleanup = cleanup
        self.profiles = profiles

    def initiate(self, session_id: str, user_id: str, sharing_category: str = "All") -> ExchangeMatch:
        profile = self.profiles(user_id)
        if not profile:
            raise NotFoundOrExpired("User profile not found")
        profile = {**profile, "user_id": profile.get("user_id") or user_id}
        self.cleanup.cleanup(user_id)
        return self.matches.create_waiting(session_id, profile, sharing_category)

    def get_paired_profile(self, token: str, viewer_id: str, scanner_category: str = "All") -> PairedProfile:
        found = self.matches.get_match_with_raw(token)
        if found is None:
            raise NotFoundOrExpired("Invalid or expired token")
        match, _ = found

        if match.is_waiting:
            match = self._complete_scan(match, viewer_id, scanner_category)

        viewer_is_a = match.user_id_for(ROLE_A) == viewer_id
        other_profile = match.profile_b if viewer_is_a else match.profile_a
        other_category = match.sharing_category_b if viewer_is_a else match.sharing_category_a
        if not other_profile:
            raise NotFoundOrExpired("Other user not found")

        return PairedProfile(
            token=match.token,
            role=ROLE_A if viewer_is_a else ROLE_B,
            profile=filter_profile_by_category(other_profile, other_category),
            matched_at=match.matched_at,
        )

    def _complete_scan(self, match: ExchangeMatch, viewer_id: str, scanner_category: str) -> ExchangeMatch:
        if match.user_id_for(ROLE_A) == viewer_id:
            raise WaitingForScan("Waiting for someone to scan your QR code")

        scanner_profile = self.profiles(viewer_id)
        if not scanner_profile:
            raise NotFoundOrExpired("Scanner profile not found")
        scanner_profile = {**scanner_profile, "user_id": scanner_profile.get("user_id") or viewer_id}

        for _ in range(COMPLETE_ATTEMPTS):
            fresh = self.matches.get_match_with_raw(match.token)
            if fresh is None:
                raise NotFoundOrExpired("Invalid or expired token")
            current, raw = fresh
            if not current.is_waiting:
                logger.info("[qr] token=%s already completed by another scanner", token_prefix(match.token))
                raise RaceLost(ALREADY_SCANNED_MESSAGE)

            current.session_b = f"scan_{secrets.token_hex(8)}"
            current.profile_b = scanner_profile
            current.sharing_category_b = scanner_category or "All"
            current.status = STATUS_MATCHED
            current.scan_status = "completed"
            current.matched_at = self.matches.store.now_ms()
            if self.matches.complete_waiting(raw, current):
                logger.info("[qr] token=%s completed by scanner user_id=%s", token_prefix(match.token), viewer_id)
                return current

        raise RaceLost(ALREADY_SCANNED_MESSAGE)

    def respond(self, token: str, viewer_id: str, accept: bool) -> dict[str, Any] | None:
        match = self.matches.get_match(token)
        if match is None:
            raise NotFoundOrExpired("Invalid or expired token")
        if match.status != STATUS_MATCHED or not match.profile_b:
            raise ValidationError("Exchange not yet complete")

        if match.user_id_for(ROLE_A) == viewer_id:
            other_profile, other_category = match.profile_b, match.sharing_category_b
        elif match.user_id_for(ROLE_B) == viewer_id:
            other_profile, other_category = match.profile_a, match.sharing_category_a
        else:
            raise Forbidden("Unauthorized for this exchange")

        if not accept:
            logger.info("[exchange] user_id=%s rejected token=%s", viewer_id, token_prefix(token))
            return None
        return filter_profile_by_category(other_profile, other_category)

    def get_preview(self, token: str) -> tuple[dict[str, Any], str]:
        found = self.matches.get_match_with_raw(token)
        if found is None:
            raise NotFoundOrExpired("Invalid or expired token")
        match, raw = found
        if not match.is_waiting:
            raise RaceLost(ALREADY_SCANNED_MESSAGE)

        category = match.sharing_category_a or "Personal"
        preview = build_preview_profile(match.profile_a, category)
        self.matches.mark_preview_accessed(match, raw)
        return preview, category
