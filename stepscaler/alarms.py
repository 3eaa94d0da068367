import logging
import math
from numbers import Real
from typing import Any, Dict, Optional

from stepscaler.errors import InvalidSample
from stepscaler.models import AlarmState, AlarmThreshold, AlarmTransition, Sample

logger = logging.getLogger(__name__)


class ThresholdEvaluator:
    """
    Fold a stream of samples into alarm state for a single threshold.

    The alarm enters IN_ALARM once `evaluation_periods` consecutive samples
    breach the threshold and goes back to OK on the first sample that does
    not. Transitions are edge-triggered: a threshold that stays breached only
    produces one OK -> IN_ALARM transition.
    """

    def __init__(self, name: str, threshold: AlarmThreshold):
        self.name = name
        self.threshold = threshold
        self.state = AlarmState.OK
        self.consecutive_breaches = 0

    @property
    def in_alarm(self) -> bool:
        return self.state == AlarmState.IN_ALARM

    def observe(self, sample: Sample) -> Optional[AlarmTransition]:
        """
        Evaluate one sample.

        Args:
            sample: Metric reading to evaluate

        Returns:
            AlarmTransition if the alarm changed state, otherwise None

        Raises:
            InvalidSample: If the sample value is not a finite number. Counter
                state is left untouched.
        """
        value = sample.value
        if isinstance(value, bool) or not isinstance(value, Real) or not math.isfinite(value):
            raise InvalidSample(f"Rejected sample for alarm {self.name}: {value!r}")

        if not self.threshold.is_breached(value):
            self.consecutive_breaches = 0
            if self.in_alarm:
                return self._transition(AlarmState.OK, sample)
            return None

        # The count never needs to grow past the window size
        self.consecutive_breaches = min(self.consecutive_breaches + 1, self.threshold.evaluation_periods)
        logger.debug(f"Alarm {self.name}: {value} breaches {self.threshold.comparison.value} "
                     f"{self.threshold.bound} ({self.consecutive_breaches}/{self.threshold.evaluation_periods})")

        if not self.in_alarm and self.consecutive_breaches >= self.threshold.evaluation_periods:
            return self._transition(AlarmState.IN_ALARM, sample)
        return None

    def _transition(self, new_state: AlarmState, sample: Sample) -> AlarmTransition:
        transition = AlarmTransition(self.name, self.state, new_state, sample.timestamp)
        logger.info(f"Alarm {self.name} changed from {self.state.value} to {new_state.value} "
                    f"on value {sample.value}")
        self.state = new_state
        return transition

    def snapshot(self) -> Dict[str, Any]:
        return {'state': self.state.value, 'consecutive_breaches': self.consecutive_breaches}

    def restore(self, data: Dict[str, Any]):
        self.state = AlarmState(data.get('state', AlarmState.OK.value))
        self.consecutive_breaches = min(int(data.get('consecutive_breaches', 0)),
                                        self.threshold.evaluation_periods)
