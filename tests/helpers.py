"""Shared test helpers."""
from pricemap.jobs.run_control import RunControl
from pricemap.parse.models import PropertyRecord


class RecordingControl(RunControl):
    """RunControl whose sleeps return immediately and are recorded."""

    def __init__(self, cancel_on_sleep: bool = False):
        super().__init__()
        self.sleeps: list[float] = []
        self.cancel_on_sleep = cancel_on_sleep

    async def sleep(self, delay: float) -> None:
        self.raise_if_stopped()
        self.sleeps.append(delay)
        if self.cancel_on_sleep:
            self.cancel("test cancel")
        self.raise_if_stopped()


def make_record(external_id: str = "1", source: str = "test_source", **fields) -> PropertyRecord:
    data = dict(
        source=source,
        external_id=external_id,
        country="United Kingdom",
        city="London",
        address="1 Test Street, London",
        latitude=51.5074,
        longitude=-0.1278,
        price=250000.0,
        currency="GBP",
    )
    data.update(fields)
    return PropertyRecord(**data)
