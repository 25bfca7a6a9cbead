import datetime
import logging
from typing import Callable, Sequence

from targetscheduler.errors import SequenceCancelled, SequenceFailedError
from .expert import FlatHistory, LightSession

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class FlatSetRunner:
    """Capture flat sets on a panel and record them in the flat history.

    One set is taken per distinct flat spec; every light session sharing that
    spec is recorded once the set succeeds. A cancelled run records nothing
    for the set in progress.
    """

    def __init__(
        self,
        flat_device,
        repository,
        token=None,
        auto_exposure: bool = False,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ):
        self._device = flat_device
        self._repository = repository
        self._token = token
        self._auto_exposure = auto_exposure
        self._clock = clock

    def run(self, sessions: Sequence[LightSession]) -> list[LightSession]:
        """Take flats for sessions; returns the sessions that got their flats."""
        if not sessions:
            return []
        if self._device is None:
            raise SequenceFailedError("Flats requested but no flat device is connected")

        specs = []
        for session in sessions:
            if session.flat_spec not in specs:
                specs.append(session.flat_spec)

        done: list[LightSession] = []
        try:
            self._check_cancel()
            self._device.close_cover()
            self._device.toggle_light(True)
            for spec in specs:
                self._check_cancel()
                logger.info("Taking flat set: %s gain=%s offset=%s", spec.filter_name, spec.gain, spec.offset)
                if not self._device.take_flat_set(spec, self._auto_exposure):
                    logger.warning("Flat set failed for %s; no history recorded", spec.filter_name)
                    continue
                taken_at = self._clock()
                for session in sessions:
                    if session.flat_spec != spec:
                        continue
                    self._repository.add_flat_history(
                        FlatHistory(
                            target_id=session.target_id,
                            light_session_date=session.session_date,
                            flats_taken=taken_at,
                            flat_spec=spec,
                        )
                    )
                    done.append(session)
        except SequenceCancelled:
            logger.warning("Flat capture cancelled after %d of %d sessions", len(done), len(sessions))
            raise
        except Exception as exc:
            raise SequenceFailedError(f"Flat capture failed: {exc}") from exc
        finally:
            self._device.toggle_light(False)

        logger.info("Flat capture complete: %d of %d sessions", len(done), len(sessions))
        return done

    def _check_cancel(self) -> None:
        if self._token is not None:
            self._token.raise_if_cancelled()
