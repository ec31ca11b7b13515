"""
Reset a subject's review progress.

DANGEROUS: This deletes every stored item of the subject!
History and achievement logs are kept.

Usage:
    # Interactive confirmation
    python -m scripts.maintenance.reset_subject ANA

    # Skip the confirmation prompt
    python -m scripts.maintenance.reset_subject ANA --yes

    # Correct a single item instead of resetting the subject
    python -m scripts.maintenance.reset_subject ANA --ordinal 3 --stage 2
"""

from __future__ import annotations

import argparse

from studytrack import config
from studytrack.service import StudyTracker
from studytrack.store import create_store


def reset(tracker: StudyTracker, code: str, assume_yes: bool = False) -> int:
    """
    Reset a subject after confirmation.

    Returns:
        Number of deleted items (0 if cancelled)
    """
    stats = tracker.get_subject_stats(code)
    print("=" * 60)
    print(f"WARNING: Reset subject {code}")
    print("=" * 60)
    print(f"  Started items: {stats['started']} of {stats['total']}")
    print()

    if not assume_yes:
        response = input("Are you sure you want to reset? (type 'yes' to confirm): ")
        if response.lower() != "yes":
            print("\nCancelled. No changes made.")
            return 0

    deleted = tracker.reset_subject(code)
    print(f"✓ Deleted {deleted} items")
    return deleted


def main():
    parser = argparse.ArgumentParser(description="Reset or correct subject progress")
    parser.add_argument("subject", help="Subject code, e.g. ANA")
    parser.add_argument("--ordinal", type=int, help="Only change this item")
    parser.add_argument("--stage", type=int, help="New stage for --ordinal (0 resets it)")
    parser.add_argument("--user", default=None, help="User id (default: DEFAULT_USER_ID)")
    parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    args = parser.parse_args()

    config.configure_logging()
    store = create_store()
    tracker = StudyTracker(store, user_id=args.user)

    try:
        if args.ordinal is not None:
            if args.stage is None:
                parser.error("--ordinal requires --stage")
            item = tracker.manual_set_stage(args.subject, args.ordinal, args.stage)
            print(f"✓ {item.id} is now at stage {item.stage}")
        else:
            reset(tracker, args.subject, assume_yes=args.yes)
    finally:
        store.close()


if __name__ == "__main__":
    main()
