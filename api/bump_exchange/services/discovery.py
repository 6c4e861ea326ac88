from typing import Any

from .match_store import MatchStore


class PollingDiscovery:
    """Read-only status lookup for the side that did not create the match."""

    def __init__(self, matches: MatchStore) -> None:
        self.matches = matches

    def poll_status(self, session_id: str) -> dict[str, Any]:
        found = self.matches.get_match_by_session(session_id)
        if found is not None:
            match, role = found
            result: dict[str, Any] = {"has_match": True, "token": match.token, "role": role}
            if match.scan_status:
                result["scan_status"] = match.scan_status
            return result

        waiting = self.matches.get_waiting_by_session(session_id)
        if waiting is not None and waiting.is_waiting and waiting.scan_status:
            return {"has_match": False, "scan_status": waiting.scan_status}
        return {"has_match": False}
