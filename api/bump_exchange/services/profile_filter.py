from typing import Any

PREVIEW_VALUE_FIELDS = {"name", "bio"}


def effective_category(sharing_category: str | None) -> str:
    # "All" exposes the personal card; work details need an explicit Work share.
    if sharing_category in {"Personal", "Work"}:
        return sharing_category
    return "Personal"


def entry_visible_for(entry: dict[str, Any], category: str) -> bool:
    if not entry.get("is_visible", True):
        return False
    section = str(entry.get("section") or "universal").lower()
    if category == "Personal" and section == "work":
        return False
    if category == "Work" and section == "personal":
        return False
    return True


def filter_profile_by_category(profile: dict[str, Any], sharing_category: str | None) -> dict[str, Any]:
    category = effective_category(sharing_category)
    filtered = dict(profile)
    filtered["contact_entries"] = [
        dict(entry) for entry in profile.get("contact_entries") or [] if entry_visible_for(entry, category)
    ]
    return filtered


def build_preview_profile(profile: dict[str, Any], sharing_category: str | None) -> dict[str, Any]:
    """Limited card for signed-out viewers: which fields exist, but only name and bio values."""
    category = effective_category(sharing_category)
    entries: list[dict[str, Any]] = []
    for entry in profile.get("contact_entries") or []:
        if not entry_visible_for(entry, category):
            continue
        item = dict(entry)
        if item.get("field_type") not in PREVIEW_VALUE_FIELDS:
            item["value"] = ""
        entries.append(item)
    return {
        "user_id": profile.get("user_id"),
        "short_code": profile.get("short_code"),
        "profile_image": profile.get("profile_image") or "",
        "background_image": profile.get("background_image") or "",
        "background_colors": profile.get("background_colors"),
        "last_updated": profile.get("last_updated"),
        "contact_entries": entries,
    }
