"""Tests for the metrics collector."""

from rtalks.core.monitoring import MetricsCollector


def test_errors_counted_by_category():
    metrics = MetricsCollector()
    metrics.track_error("database")
    metrics.track_error("upload")
    metrics.track_error("upload")
    metrics.track_error("auth")

    errors = metrics.snapshot()["errors"]

    assert errors == {"database": 1, "upload": 2, "auth": 1, "other": 0, "total": 4}


def test_unknown_category_counts_as_other():
    metrics = MetricsCollector()
    metrics.track_error("disk")
    metrics.track_error()

    assert metrics.snapshot()["errors"]["other"] == 2


def test_upload_outcomes():
    metrics = MetricsCollector()
    metrics.track_upload()
    metrics.track_upload("rejected")
    metrics.track_upload("orphaned")
    metrics.track_upload("orphaned")

    assert metrics.snapshot()["uploads"] == {"stored": 1, "rejected": 1, "orphaned": 2}


def test_snapshot_is_a_copy():
    metrics = MetricsCollector()
    snapshot = metrics.snapshot()
    snapshot["errors"]["database"] = 99
    snapshot["uploads"]["stored"] = 99

    fresh = metrics.snapshot()
    assert fresh["errors"]["database"] == 0
    assert fresh["uploads"]["stored"] == 0


def test_reset():
    metrics = MetricsCollector()
    metrics.track_error("auth")
    metrics.track_upload()
    metrics.reset()

    snapshot = metrics.snapshot()
    assert snapshot["errors"]["total"] == 0
    assert snapshot["uploads"]["stored"] == 0


def test_uptime_and_error_warning():
    now = [100.0]
    metrics = MetricsCollector(clock=lambda: now[0])
    for _ in range(101):
        metrics.track_error("other")
    now[0] = 160.5

    snapshot = metrics.snapshot()
    assert snapshot["uptime_seconds"] == 60.5
    assert snapshot["warnings"]["errors"] is True
