import pytest

from helpers import RecordingSleep


@pytest.fixture()
def sleep() -> RecordingSleep:
    return RecordingSleep()
