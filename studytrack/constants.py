"""
studytrack Constants

Scheduling parameters and sentinel values in one place.
"""


# ---- Interval Table ----
# Day offsets between reviews, indexed by stage (stage 1 -> 1 day, ...).
# An item advanced past the last stage is completed.

INTERVALS = (1, 2, 4, 7)


# ---- Sentinels ----

COMPLETED = "COMPLETED"  # next_review_at once the table is exhausted


# ---- Selection ----

DEFAULT_SEED_COUNT = 5  # Items per subject marked due by mark_first_items_due
