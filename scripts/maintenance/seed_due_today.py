"""
Seed today's reviews with the first items of every subject.

Marks the first N unstarted items of each configured subject as studied
yesterday (stage 1) so they show up as due today. Items already started
are left alone.

Usage:
    python -m scripts.maintenance.seed_due_today
    python -m scripts.maintenance.seed_due_today --count 10
"""

from __future__ import annotations

import argparse

from studytrack import config
from studytrack.constants import DEFAULT_SEED_COUNT
from studytrack.service import StudyTracker
from studytrack.store import create_store


def main():
    parser = argparse.ArgumentParser(description="Mark the first items of every subject as due today")
    parser.add_argument("--count", type=int, default=DEFAULT_SEED_COUNT, help="Items per subject")
    parser.add_argument("--user", default=None, help="User id (default: DEFAULT_USER_ID)")
    args = parser.parse_args()

    config.configure_logging()
    store = create_store()
    tracker = StudyTracker(store, user_id=args.user)

    try:
        subjects = tracker.get_subjects()
        if not subjects:
            print("No subjects configured. Nothing to seed.")
            return

        written = tracker.mark_first_items_due(args.count)
        print(f"✓ Seeded {written} items across {len(subjects)} subjects")
        print(f"  Due today: {len(tracker.get_due_items())}")
    finally:
        store.close()


if __name__ == "__main__":
    main()
