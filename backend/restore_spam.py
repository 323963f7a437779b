"""
Restore messages wrongly flagged before a cutoff date.

Usage (from backend/):
    python restore_spam.py 2025-10-29            # dry run
    python restore_spam.py 2025-10-29 --apply    # actually restore
"""

import sys

from spamguard.database import SessionLocal, init_db
from spamguard.services.errors import SpamValidationError
from spamguard.services.review import restore_before, status_counts


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        return 1

    before_date = sys.argv[1]
    apply = "--apply" in sys.argv[2:]

    init_db()
    db = SessionLocal()

    try:
        print("=" * 70)
        print("RESTORE FLAGGED MESSAGES")
        print("=" * 70)

        counts = status_counts(db)
        print(f"\n1. Current counts: {counts['pending']} pending, {counts['review']} review")

        try:
            result = restore_before(db, before_date, dry_run=not apply)
        except SpamValidationError as e:
            print(f"✗ {e}")
            return 1

        print(f"\n2. {result['count']} review messages created before {before_date}")
        for row in result["sample"]:
            matches = ", ".join(row["matches"]) or "no annotations"
            print(f"   - #{row['id']} [{row['brand'] or '-'}] {row['text'][:50]!r} ({matches})")

        if result["dry_run"]:
            print("\n   Dry run only. Re-run with --apply to restore.")
        else:
            print(f"\n   ✓ Restored {result['restored']} messages to pending")

        print("=" * 70)
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
