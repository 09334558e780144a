from datetime import datetime, timedelta
from types import SimpleNamespace

from app.reports import summarize

T0 = datetime(2024, 3, 1, 8, 0, 0)


def row(vehicle_class, opened_at, closed_at=None, fee=None):
    return (
        SimpleNamespace(vehicle_class=vehicle_class),
        SimpleNamespace(opened_at=opened_at, closed_at=closed_at, fee=fee),
    )


def test_statistics_per_class():
    history = [
        row("car", T0, T0 + timedelta(hours=1, minutes=30), fee=10),
        row("car", T0 + timedelta(hours=3)),
        row("bike", T0, T0 + timedelta(minutes=30), fee=3),
    ]

    stats = summarize(history)

    assert stats.vehicles_by_class == {"car": 2, "bike": 1}
    assert stats.revenue_by_class == {"car": 10, "bike": 3}
    assert stats.average_duration_by_class == {"car": 1.5, "bike": 0.5}


def test_classes_without_closed_sessions_have_no_average():
    stats = summarize([row("truck", T0)])

    assert stats.vehicles_by_class == {"truck": 1}
    assert stats.revenue_by_class == {}
    assert stats.average_duration_by_class == {}


def test_empty_history():
    stats = summarize([])
    assert stats.vehicles_by_class == {}
    assert stats.average_duration_by_class == {}
