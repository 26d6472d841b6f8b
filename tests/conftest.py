from datetime import datetime, timezone

import pytest

from db.sqlite import NotificationStorage
from fakes import FakeClock, FakeMessenger


@pytest.fixture
def storage(tmp_path) -> NotificationStorage:
    return NotificationStorage(str(tmp_path / "notifications.db"))


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def clock() -> FakeClock:
    # 14:00 in Kuala Lumpur
    return FakeClock(datetime(2024, 1, 1, 6, 0, tzinfo=timezone.utc))
