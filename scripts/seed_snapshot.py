import argparse
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from synchron.config import default_data_path
from synchron.errors import PersistenceError
from synchron.persistence import FileSnapshotStore

DEMO_USERS = [
    ("430000001", "Ali Abbas", "12", "430000001@student.sbhs.nsw.edu.au", "Active", "Student"),
    ("430000002", "John Smith", "11", "430000002@student.sbhs.nsw.edu.au", "Active", "Student"),
    ("430000003", "David Chen", "10", "430000003@student.sbhs.nsw.edu.au", "Warning", "Student"),
    ("430000004", "Michael Park", "12", "430000004@student.sbhs.nsw.edu.au", "Active", "Prefect"),
    ("430000005", "Sarah Jones", "Staff", "s.jones@sbhs.nsw.edu.au", "Active", "Teacher"),
    ("430000006", "James Wilson", "9", "430000006@student.sbhs.nsw.edu.au", "Inactive", "Student"),
]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Write the demo roster to a snapshot file")
    parser.add_argument(
        "--path",
        dest="path",
        default=None,
        help="Snapshot file to write (defaults to SYNCHRON_DATA_PATH or data/users.json)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing snapshot",
    )
    return parser.parse_args()


def build_users() -> list:
    now = datetime.now(timezone.utc).isoformat()
    return [
        {
            "id": user_id,
            "name": name,
            "year": year,
            "email": email,
            "status": status,
            "role": role,
            "timetable": None,
            "joined": now,
            "lastSeen": now,
        }
        for user_id, name, year, email, status, role in DEMO_USERS
    ]


def main() -> int:
    args = parse_args()

    raw_path = args.path or os.getenv("SYNCHRON_DATA_PATH")
    path = Path(raw_path).expanduser().resolve(strict=False) if raw_path else default_data_path()

    if path.exists() and not args.force:
        print(f"Error: {path} already exists. Pass --force to overwrite it.", file=sys.stderr)
        return 1

    store = FileSnapshotStore(path)
    try:
        store.save(build_users())
    except PersistenceError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Wrote {len(DEMO_USERS)} demo user(s) to {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
