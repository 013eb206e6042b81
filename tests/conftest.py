"""Pytest configuration and shared fixtures."""

import pytest

from agenda import create_app
from agenda.extensions import db
from agenda.live_sync import close_controllers
from agenda.models import ProgramItem

EVENT_ID = "5b0f6a52-0c1e-4a4e-9a36-1f3f7c2d9e10"


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds=1.0):
        self.now += seconds


@pytest.fixture
def app():
    app = create_app('config.TestingConfig')
    with app.app_context():
        yield app
        close_controllers(app)
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def program(app):
    """Three-section program: 1, 2 and 5 minutes."""
    items = [
        ProgramItem(id="item-1", event_id=EVENT_ID, position=0, title="Alabanza", duration_minutes=1),
        ProgramItem(id="item-2", event_id=EVENT_ID, position=1, title="Ofrenda", duration_minutes=2),
        ProgramItem(id="item-3", event_id=EVENT_ID, position=2, title="Predicación", duration_minutes=5),
    ]
    db.session.add_all(items)
    db.session.commit()
    return items
