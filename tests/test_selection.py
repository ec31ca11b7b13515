from datetime import datetime, timedelta, timezone

from studytrack.constants import COMPLETED
from studytrack.scheduling import (
    date_key,
    end_of_day,
    select_due_items,
    select_new_suggestions,
    subject_items,
    subject_stats,
)
from studytrack.schemas import Item, Subject

NOW = datetime(2024, 3, 10, 9, 30, tzinfo=timezone.utc)


def _item(ordinal, stage=1, due=None, subject="ANA", **kwargs):
    return Item(subject=subject, ordinal=ordinal, stage=stage, next_review_at=due, **kwargs)


def test_end_of_day_and_date_key():
    eod = end_of_day(NOW)
    assert eod.date() == NOW.date()
    assert eod.hour == 23 and eod.minute == 59
    assert date_key(NOW) == "2024-03-10"
    # 23:30 at UTC-5 is already the next UTC day
    local = datetime(2024, 3, 10, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    assert date_key(local) == "2024-03-11"


def test_due_items_include_later_today():
    later_today = NOW.replace(hour=22)
    tomorrow = NOW + timedelta(days=1)
    items = [
        _item(1, due=later_today),
        _item(2, due=NOW - timedelta(days=3)),
        _item(3, due=tomorrow),
    ]

    due = select_due_items(items, end_of_day(NOW))

    assert [item.ordinal for item in due] == [2, 1]


def test_due_items_skip_completed_and_unscheduled():
    items = [
        _item(1, stage=5, due=COMPLETED, is_completed=True),
        _item(2, stage=0, due=None),
        _item(3, due=NOW, is_completed=True),
        _item(4, due=NOW),
    ]
    due = select_due_items(items, end_of_day(NOW))
    assert [item.id for item in due] == ["ANA_4"]


def test_due_ties_broken_by_id():
    items = [_item(2, due=NOW, subject="PHY"), _item(2, due=NOW, subject="ANA")]
    due = select_due_items({i.id: i for i in items}, end_of_day(NOW))
    assert [item.id for item in due] == ["ANA_2", "PHY_2"]


def test_new_suggestions_one_per_subject():
    subjects = [
        Subject(code="ANA", total_item_count=5),
        Subject(code="PHY", total_item_count=2),
        Subject(code="BIO", total_item_count=0),
    ]
    items = [
        _item(1, due=NOW),
        _item(2, due=NOW),
        _item(1, subject="PHY", due=NOW),
        _item(2, subject="PHY", due=NOW),
    ]

    suggestions = select_new_suggestions(subjects, items)

    assert [item.id for item in suggestions] == ["ANA_3"]
    assert suggestions[0].stage == 0


def test_new_suggestion_prefers_reset_record_with_metadata():
    subjects = [Subject(code="ANA", total_item_count=3)]
    items = [_item(1, due=NOW), _item(2, stage=0, title="Kidney")]

    suggestions = select_new_suggestions(subjects, items)

    assert suggestions[0].id == "ANA_2"
    assert suggestions[0].title == "Kidney"


def test_subject_items_fill_defaults():
    subject = Subject(code="PHY", total_item_count=3)
    items = [_item(2, subject="PHY", stage=2, due=NOW)]

    listed = subject_items(subject, items)

    assert [item.stage for item in listed] == [0, 2, 0]
    assert [item.id for item in listed] == ["PHY_1", "PHY_2", "PHY_3"]


def test_subject_stats_counts_started():
    subject = Subject(code="ANA", total_item_count=20)
    items = [_item(1, due=NOW), _item(2, stage=0), _item(1, subject="PHY", due=NOW)]

    assert subject_stats(subject, items) == {"total": 20, "started": 1, "new": 19}


def test_subject_stats_never_negative():
    subject = Subject(code="ANA", total_item_count=1)
    items = [_item(1, due=NOW), _item(5, due=NOW)]
    assert subject_stats(subject, items)["new"] == 0
