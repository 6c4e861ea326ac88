from conftest import make_profile

from bump_exchange.services.profile_filter import (
    build_preview_profile,
    effective_category,
    filter_profile_by_category,
)


def _fields(profile):
    return [e["field_type"] for e in profile["contact_entries"]]


def test_effective_category():
    assert effective_category("Work") == "Work"
    assert effective_category("Personal") == "Personal"
    assert effective_category("All") == "Personal"
    assert effective_category(None) == "Personal"


def test_personal_hides_work_and_invisible_entries():
    profile = make_profile("u1")
    assert _fields(filter_profile_by_category(profile, "Personal")) == ["name", "bio", "phone", "instagram"]
    assert _fields(filter_profile_by_category(profile, "All")) == ["name", "bio", "phone", "instagram"]


def test_work_hides_personal_entries():
    profile = make_profile("u1")
    assert _fields(filter_profile_by_category(profile, "Work")) == ["name", "bio", "email"]


def test_filter_does_not_mutate_source():
    profile = make_profile("u1")
    filter_profile_by_category(profile, "Work")
    assert len(profile["contact_entries"]) == 6


def test_preview_keeps_only_name_and_bio_values():
    preview = build_preview_profile(make_profile("u1", name="Ada"), "Work")
    assert {e["field_type"]: e["value"] for e in preview["contact_entries"]} == {
        "name": "Ada",
        "bio": "u1 bio",
        "email": "",
    }
    assert preview["short_code"] == "u1-code"
