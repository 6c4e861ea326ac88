import threading

import pytest

from conftest import make_profile

from bump_exchange.models import ROLE_A, ROLE_B
from bump_exchange.services.cleanup import CleanupService
from bump_exchange.services.errors import Forbidden, NotFoundOrExpired, RaceLost, ValidationError, WaitingForScan
from bump_exchange.services.match_store import MatchStore
from bump_exchange.services.qr_completion import QRCompletionService


def _service(store, profiles):
    matches = MatchStore(store)
    return QRCompletionService(matches, CleanupService(store), profiles.get), matches


def _fields(profile):
    return {e["field_type"] for e in profile["contact_entries"]}


def test_initiate_requires_profile(store, profiles):
    qr, _ = _service(store, profiles)
    with pytest.raises(NotFoundOrExpired):
        qr.initiate("s1", "nobody")


def test_displayer_polling_own_code_is_told_to_wait(store, profiles):
    qr, _ = _service(store, profiles)
    waiting = qr.initiate("s1", "u1", "Work")
    with pytest.raises(WaitingForScan) as exc:
        qr.get_paired_profile(waiting.token, "u1")
    assert exc.value.code == "WAITING_FOR_SCAN"


def test_scan_completes_waiting_match_and_filters_by_category(store, profiles):
    qr, matches = _service(store, profiles)
    waiting = qr.initiate("s1", "u1", "Work")

    paired = qr.get_paired_profile(waiting.token, "u2", "Personal")
    assert paired.role == ROLE_B
    assert paired.profile["user_id"] == "u1"
    assert _fields(paired.profile) == {"name", "bio", "email"}
    assert paired.matched_at is not None

    found = matches.get_match_by_session("s1")
    assert found is not None and found[1] == ROLE_A
    back = qr.get_paired_profile(waiting.token, "u1")
    assert back.role == ROLE_A
    assert back.profile["user_id"] == "u2"
    assert _fields(back.profile) == {"name", "bio", "phone", "instagram"}


def test_second_scanner_loses(store, profiles):
    qr, _ = _service(store, profiles)
    waiting = qr.initiate("s1", "u1")
    qr.get_paired_profile(waiting.token, "u2")

    # a third party reading a completed token sees the displayer's card
    assert qr.get_paired_profile(waiting.token, "u3").profile["user_id"] == "u1"
    with pytest.raises(RaceLost) as exc:
        qr.get_preview(waiting.token)
    assert exc.value.code == "ALREADY_SCANNED"


def test_concurrent_scans_yield_one_winner(store, profiles):
    qr, matches = _service(store, profiles)
    waiting = qr.initiate("s1", "u1")
    barrier = threading.Barrier(2)
    outcomes: dict[str, object] = {}

    original = matches.get_match_with_raw
    reads: dict[int, int] = {}

    def slow_read(token):
        found = original(token)
        me = threading.get_ident()
        reads[me] = reads.get(me, 0) + 1
        if reads[me] == 2:
            # both scanners hold the waiting snapshot before either writes
            barrier.wait(timeout=5)
        return found

    matches.get_match_with_raw = slow_read

    def scan(user_id):
        try:
            outcomes[user_id] = qr.get_paired_profile(waiting.token, user_id)
        except RaceLost as exc:
            outcomes[user_id] = exc
        except threading.BrokenBarrierError as exc:
            outcomes[user_id] = exc

    threads = [threading.Thread(target=scan, args=(uid,)) for uid in ("u2", "u3")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    winners = [uid for uid, o in outcomes.items() if not isinstance(o, Exception)]
    losers = [uid for uid, o in outcomes.items() if isinstance(o, RaceLost)]
    assert len(winners) == 1
    assert len(losers) == 1
    final = matches.get_match(waiting.token)
    assert final.user_id_for(ROLE_B) == winners[0]


def test_preview_marks_pending_auth_and_hides_values(store, profiles):
    qr, matches = _service(store, profiles)
    waiting = qr.initiate("s1", "u1", "Personal")

    preview, category = qr.get_preview(waiting.token)
    assert category == "Personal"
    values = {e["field_type"]: e["value"] for e in preview["contact_entries"]}
    assert values == {"name": "U1", "bio": "u1 bio", "phone": "", "instagram": ""}
    assert matches.get_match(waiting.token).scan_status == "pending_auth"

    # preview metadata changing under a scanner does not block the scan
    paired = qr.get_paired_profile(waiting.token, "u2")
    assert paired.profile["user_id"] == "u1"
    assert matches.get_match(waiting.token).scan_status == "completed"


def test_unknown_token(store, profiles):
    qr, _ = _service(store, profiles)
    with pytest.raises(NotFoundOrExpired):
        qr.get_paired_profile("nope", "u1")
    with pytest.raises(NotFoundOrExpired):
        qr.get_preview("nope")
    with pytest.raises(NotFoundOrExpired):
        qr.respond("nope", "u1", True)


def test_respond_accept_reject_and_outsider(store, profiles):
    qr, matches = _service(store, profiles)
    matches.create_match("tok", "s1", "s2", make_profile("u1"), make_profile("u2"), "Work", "Personal")

    accepted = qr.respond("tok", "u1", True)
    assert accepted["user_id"] == "u2"
    assert _fields(accepted) == {"name", "bio", "phone", "instagram"}
    assert qr.respond("tok", "u2", False) is None
    with pytest.raises(Forbidden):
        qr.respond("tok", "u9", True)


def test_respond_before_completion(store, profiles):
    qr, _ = _service(store, profiles)
    waiting = qr.initiate("s1", "u1")
    with pytest.raises(ValidationError):
        qr.respond(waiting.token, "u1", True)
