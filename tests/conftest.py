import pytest

from tests.helpers import RecordingControl


@pytest.fixture
def control():
    return RecordingControl()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "properties.db"
