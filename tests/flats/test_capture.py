import datetime

import pytest

from targetscheduler.devices import SimulatedFlatPanel
from targetscheduler.errors import SequenceCancelled, SequenceFailedError
from targetscheduler.flats import FlatSetRunner, FlatSpec, LightSession
from targetscheduler.repository import InMemoryRepository
from targetscheduler.sequencer import CancellationToken

NOW = datetime.datetime(2024, 7, 1, 20, 0, tzinfo=datetime.timezone.utc)
SESSION = datetime.date(2024, 7, 1)


def _spec(filter_name):
    return FlatSpec(
        filter_name=filter_name,
        gain=100,
        offset=10,
        binning=1,
        readout_mode=0,
        rotation_deg=0.0,
        roi=1.0,
    )


def _sessions(*filters, target_id=1):
    return [LightSession(target_id, SESSION, _spec(f)) for f in filters]


class _RecordingPanel(SimulatedFlatPanel):
    def __init__(self, fail_with=None, **kwargs):
        super().__init__(**kwargs)
        self.calls = []
        self._fail_with = fail_with

    def close_cover(self):
        self.calls.append("close_cover")
        super().close_cover()

    def toggle_light(self, on):
        self.calls.append(f"light:{on}")
        super().toggle_light(on)

    def take_flat_set(self, spec, is_auto_exposure):
        self.calls.append(f"flats:{spec.filter_name}")
        if self._fail_with is not None:
            raise self._fail_with
        return super().take_flat_set(spec, is_auto_exposure)


def test_captures_each_spec_once_and_records_history():
    panel = _RecordingPanel()
    repository = InMemoryRepository()
    sessions = _sessions("L", "R") + _sessions("L", target_id=2)
    done = FlatSetRunner(panel, repository, clock=lambda: NOW).run(sessions)

    assert panel.calls == ["close_cover", "light:True", "flats:L", "flats:R", "light:False"]
    assert len(done) == 3
    history = repository.get_flats_history(SESSION)
    assert sorted((h.target_id, h.flat_spec.filter_name) for h in history) == [(1, "L"), (1, "R"), (2, "L")]
    assert all(h.flats_taken == NOW for h in history)


def test_failed_set_records_nothing_for_it():
    panel = _RecordingPanel(fail_filters=["R"])
    repository = InMemoryRepository()
    done = FlatSetRunner(panel, repository).run(_sessions("L", "R"))
    assert [s.flat_spec.filter_name for s in done] == ["L"]
    assert [h.flat_spec.filter_name for h in repository.get_flats_history(SESSION)] == ["L"]
    assert not panel.light_on


def test_nothing_to_do():
    assert FlatSetRunner(None, InMemoryRepository()).run([]) == []


def test_missing_device_fails():
    with pytest.raises(SequenceFailedError):
        FlatSetRunner(None, InMemoryRepository()).run(_sessions("L"))


def test_cancellation_propagates_without_history():
    token = CancellationToken()
    token.cancel("operator stop")
    panel = _RecordingPanel()
    repository = InMemoryRepository()
    with pytest.raises(SequenceCancelled):
        FlatSetRunner(panel, repository, token=token).run(_sessions("L"))
    assert repository.get_flats_history(SESSION) == []
    assert panel.calls == ["light:False"]


def test_cancellation_mid_capture():
    panel = _RecordingPanel(fail_with=SequenceCancelled("stop"))
    repository = InMemoryRepository()
    with pytest.raises(SequenceCancelled):
        FlatSetRunner(panel, repository).run(_sessions("L", "R"))
    assert repository.get_flats_history(SESSION) == []
    assert panel.calls[-1] == "light:False"


def test_device_exception_becomes_sequence_failure():
    panel = _RecordingPanel(fail_with=RuntimeError("panel offline"))
    with pytest.raises(SequenceFailedError, match="panel offline"):
        FlatSetRunner(panel, InMemoryRepository()).run(_sessions("L"))
    assert not panel.light_on
