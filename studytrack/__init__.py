"""
studytrack - adaptive review scheduling and cross-device focus sessions.

Quick start:
    from studytrack.service import StudyTracker

    tracker = StudyTracker()            # backend from STUDYTRACK_STORE
    tracker.add_subject("ANA", "Anatomy", total_item_count=20)
    for item in tracker.get_new_suggestions():
        tracker.build_queue_add(item)
    tracker.start_session()
"""

__version__ = "0.1.0"
