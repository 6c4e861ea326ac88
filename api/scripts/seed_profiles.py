import argparse
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from bump_exchange import repo
from bump_exchange.auth.security import create_access_token


def demo_profile(index: int) -> dict:
    handle = f"demo{index:03d}"
    return {
        "short_code": handle,
        "profile_image": "",
        "background_image": "",
        "background_colors": ["#1f2937", "#f9fafb"],
        "contact_entries": [
            {"field_type": "name", "value": f"Demo User {index}", "section": "universal", "is_visible": True},
            {"field_type": "bio", "value": "Seeded for local bump testing", "section": "universal", "is_visible": True},
            {"field_type": "phone", "value": f"+1 555 01{index:02d}", "section": "personal", "is_visible": True},
            {"field_type": "email", "value": f"{handle}@work.example", "section": "work", "is_visible": True},
        ],
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo exchange profiles and print session tokens")
    parser.add_argument("--n-users", type=int, default=2)
    parser.add_argument("--ttl-minutes", type=int, default=240)
    args = parser.parse_args()

    repo.ensure_profile_table()
    for i in range(1, args.n_users + 1):
        user_id = f"demo-user-{i}"
        repo.upsert_profile(user_id, demo_profile(i))
        print(f"- {user_id}: {create_access_token(user_id, ttl_minutes=args.ttl_minutes)}")

    print("Seed completed")


if __name__ == "__main__":
    main()
