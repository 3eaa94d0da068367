from enum import Enum
from typing import Any, Dict, NamedTuple, Optional, Protocol


class Comparison(str, Enum):
    GREATER_THAN = 'GreaterThanThreshold'
    LESS_THAN = 'LessThanThreshold'


class AlarmState(str, Enum):
    OK = 'OK'
    IN_ALARM = 'ALARM'


class Direction(str, Enum):
    UP = 'up'
    DOWN = 'down'


class ControllerPhase(str, Enum):
    """Lifecycle state of a capacity controller."""
    STEADY = 'STEADY'
    COOLDOWN_UP = 'COOLDOWN_UP'
    COOLDOWN_DOWN = 'COOLDOWN_DOWN'


COOLDOWN_PHASES = {
    Direction.UP: ControllerPhase.COOLDOWN_UP,
    Direction.DOWN: ControllerPhase.COOLDOWN_DOWN,
}


class Sample(NamedTuple):
    """A single aggregated metric reading."""
    value: float
    timestamp: float


class AlarmThreshold(NamedTuple):
    comparison: Comparison
    bound: float
    evaluation_periods: int

    def is_breached(self, value: float) -> bool:
        if self.comparison == Comparison.GREATER_THAN:
            return value > self.bound
        return value < self.bound


class AlarmTransition(NamedTuple):
    """An edge emitted by a threshold evaluator."""
    alarm_name: str
    old_state: AlarmState
    new_state: AlarmState
    timestamp: float

    @property
    def fired(self) -> bool:
        return self.new_state == AlarmState.IN_ALARM


class StepAdjustment(NamedTuple):
    direction: Direction
    magnitude: int
    cooldown_seconds: int


class CapacityBounds(NamedTuple):
    min: int
    max: int

    def clamp(self, capacity: int) -> int:
        return max(self.min, min(self.max, capacity))


class ScalingPolicy(NamedTuple):
    """Everything a controller needs to decide a capacity change."""
    scale_up_alarm: AlarmThreshold
    scale_down_alarm: AlarmThreshold
    scale_up_step: StepAdjustment
    scale_down_step: StepAdjustment
    bounds: CapacityBounds

    def step_for(self, direction: Direction) -> StepAdjustment:
        return self.scale_up_step if direction == Direction.UP else self.scale_down_step


class ControllerState(NamedTuple):
    current_desired_capacity: int
    last_scale_up_at: Optional[float]
    last_scale_down_at: Optional[float]


class ScalingEvent(NamedTuple):
    """Structured record emitted on every transition and scaling decision."""
    timestamp: float
    from_state: ControllerPhase
    to_state: ControllerPhase
    reason: str
    old_capacity: int
    new_capacity: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'from_state': self.from_state.value,
            'to_state': self.to_state.value,
            'reason': self.reason,
            'old_capacity': self.old_capacity,
            'new_capacity': self.new_capacity,
        }


class MetricSampler(Protocol):
    def next_sample(self) -> Sample:
        """Return the latest reading or raise SourceUnavailable."""


class CapacitySetter(Protocol):
    def set_desired_capacity(self, capacity: int) -> Optional[Dict[str, Any]]:
        """Apply a desired replica count or raise RecoverableError."""
