import logging
import time
from typing import Any, Callable, Dict, Iterable, NamedTuple, Optional, Set

from stepscaler.alarms import ThresholdEvaluator
from stepscaler.cooldown import CooldownTracker
from stepscaler.errors import InvalidSample, RecoverableError, SourceUnavailable
from stepscaler.models import (
    COOLDOWN_PHASES,
    CapacitySetter,
    ControllerPhase,
    ControllerState,
    Direction,
    MetricSampler,
    ScalingEvent,
    ScalingPolicy,
)

logger = logging.getLogger(__name__)

SCALE_UP_ALARM = 'scale-up'
SCALE_DOWN_ALARM = 'scale-down'


class TickResult(NamedTuple):
    """Summary of one evaluation tick."""
    timestamp: float
    action: str
    phase: ControllerPhase
    desired_capacity: int
    sample_value: Optional[float] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'action': self.action,
            'phase': self.phase.value,
            'desired_capacity': self.desired_capacity,
            'sample_value': self.sample_value,
        }


class CapacityController:
    """
    Step-scaling state machine for a single fleet.

    Each call to `tick` pulls one sample, folds it into the scale-up and
    scale-down alarms and, when an alarm fires outside of a cooldown, moves the
    desired capacity by the configured step. The controller is the only writer
    of its state; ticks must be serialized by the caller.

    On cooldown expiry the controller re-checks the current alarm levels on the
    next fresh sample and scales again if an alarm is still IN_ALARM, so a
    condition that persists through a cooldown is not lost.
    """

    def __init__(self,
                 policy: ScalingPolicy,
                 sampler: MetricSampler,
                 setter: CapacitySetter,
                 initial_capacity: int,
                 fleet_name: str = '',
                 clock: Callable[[], float] = time.time,
                 listeners: Iterable[Callable[[ScalingEvent], None]] = ()):
        self.policy = policy
        self.sampler = sampler
        self.setter = setter
        self.fleet_name = fleet_name
        self._clock = clock
        self._listeners = list(listeners)

        self.scale_up_evaluator = ThresholdEvaluator(SCALE_UP_ALARM, policy.scale_up_alarm)
        self.scale_down_evaluator = ThresholdEvaluator(SCALE_DOWN_ALARM, policy.scale_down_alarm)
        self.cooldowns = CooldownTracker(policy.scale_up_step.cooldown_seconds,
                                         policy.scale_down_step.cooldown_seconds)

        self.phase = ControllerPhase.STEADY
        self.desired_capacity = policy.bounds.clamp(initial_capacity)
        self.pending_apply = False
        self.recheck_pending = False
        self.last_sample_at = None

        if self.desired_capacity != initial_capacity:
            # Bring an out-of-bounds fleet back into range on the first tick
            self.pending_apply = True
            self._emit(self._clock(), self.phase, 'initial capacity clamped into bounds',
                       initial_capacity, self.desired_capacity)

    def add_listener(self, listener: Callable[[ScalingEvent], None]):
        self._listeners.append(listener)

    @property
    def state(self) -> ControllerState:
        return ControllerState(
            current_desired_capacity=self.desired_capacity,
            last_scale_up_at=self.cooldowns.last_action_at(Direction.UP),
            last_scale_down_at=self.cooldowns.last_action_at(Direction.DOWN),
        )

    def tick(self, now: float = None) -> TickResult:
        """
        Run one evaluation step.

        Per-tick failures (stale or missing metrics, malformed samples, failed
        capacity updates) are logged and reflected in the returned action; they
        never escape this method.

        Args:
            now: Evaluation time in epoch seconds (defaults to the controller clock)

        Returns:
            TickResult: What the controller did during this tick
        """
        now = self._clock() if now is None else now

        if self.pending_apply:
            logger.info(f"Retrying update of {self.fleet_name} to {self.desired_capacity} tasks")
            self._apply()

        self._expire_cooldown(now)

        try:
            sample = self.sampler.next_sample()
        except SourceUnavailable as e:
            logger.warning(f"No fresh metric for {self.fleet_name}, skipping alarm evaluation: {e}")
            return self._result(now, 'no_data')

        if self.last_sample_at is not None and sample.timestamp <= self.last_sample_at:
            # Metrics lag, so the newest datapoint is often one already folded in
            logger.info(f"No new datapoint for {self.fleet_name} since {self.last_sample_at}, "
                        f"skipping alarm evaluation")
            return self._result(now, 'no_data')
        self.last_sample_at = sample.timestamp

        try:
            up_transition = self.scale_up_evaluator.observe(sample)
            down_transition = self.scale_down_evaluator.observe(sample)
        except InvalidSample as e:
            logger.warning(f"Dropping invalid sample for {self.fleet_name}: {e}")
            return self._result(now, 'invalid_sample')

        fired = set()
        if up_transition and up_transition.fired:
            fired.add(Direction.UP)
        if down_transition and down_transition.fired:
            fired.add(Direction.DOWN)

        reason = 'alarm fired'
        if not fired and self.recheck_pending:
            fired = self._active_alarms()
            reason = 'alarm still active after cooldown'
        self.recheck_pending = False

        if not fired:
            return self._result(now, 'none', sample.value)

        direction = self._choose_direction(fired)
        alarm_name = SCALE_UP_ALARM if direction == Direction.UP else SCALE_DOWN_ALARM
        reason = f"{alarm_name} {reason} on value {sample.value}"

        if self.phase != ControllerPhase.STEADY:
            cooling = Direction.UP if self.phase == ControllerPhase.COOLDOWN_UP else Direction.DOWN
            remaining = self.cooldowns.remaining(cooling, now)
            self._emit(now, self.phase, f"{reason}; suppressed, {cooling.value} cooldown "
                                        f"{remaining:.2f}s remaining",
                       self.desired_capacity, self.desired_capacity)
            return self._result(now, 'suppressed', sample.value)

        self._scale(direction, now, reason)
        return self._result(now, f"scaled_{direction.value}", sample.value)

    def _active_alarms(self) -> Set[Direction]:
        active = set()
        if self.scale_up_evaluator.in_alarm:
            active.add(Direction.UP)
        if self.scale_down_evaluator.in_alarm:
            active.add(Direction.DOWN)
        return active

    def _choose_direction(self, fired: Set[Direction]) -> Direction:
        if len(fired) > 1:
            logger.error(f"Configuration warning: scale-up and scale-down alarms are both active for "
                         f"{self.fleet_name}; thresholds overlap. Prioritizing scale-up")
            return Direction.UP
        return next(iter(fired))

    def _expire_cooldown(self, now: float):
        if self.phase == ControllerPhase.STEADY:
            return
        direction = Direction.UP if self.phase == ControllerPhase.COOLDOWN_UP else Direction.DOWN
        if self.cooldowns.is_active(direction, now):
            return
        self.recheck_pending = True
        self._transition(ControllerPhase.STEADY, now, f"{direction.value} cooldown elapsed",
                         self.desired_capacity, self.desired_capacity)

    def _scale(self, direction: Direction, now: float, reason: str):
        step = self.policy.step_for(direction)
        old_capacity = self.desired_capacity
        new_capacity = self.policy.bounds.clamp(old_capacity + step.magnitude)

        # A clamped no-op still starts the cooldown so a saturated bound is not hammered
        self.cooldowns.record(direction, now)
        self.desired_capacity = new_capacity

        if new_capacity == old_capacity:
            reason = f"{reason}; already at bound {old_capacity}, capacity unchanged"
        else:
            reason = f"{reason}; scaling {direction.value} from {old_capacity} to {new_capacity} tasks"
            self.pending_apply = True

        self._transition(COOLDOWN_PHASES[direction], now, reason, old_capacity, new_capacity)

        # An earlier failed set stays pending for the next tick's retry
        if new_capacity != old_capacity:
            self._apply()

    def _apply(self):
        try:
            self.setter.set_desired_capacity(self.desired_capacity)
            self.pending_apply = False
        except RecoverableError as e:
            self.pending_apply = True
            logger.warning(f"Failed to apply desired capacity {self.desired_capacity} for "
                           f"{self.fleet_name}, will retry next tick: {e}")

    def _transition(self, to_state: ControllerPhase, now: float, reason: str,
                    old_capacity: int, new_capacity: int):
        from_state = self.phase
        self.phase = to_state
        self._emit(now, from_state, reason, old_capacity, new_capacity, to_state)

    def _emit(self, now: float, from_state: ControllerPhase, reason: str,
              old_capacity: int, new_capacity: int, to_state: ControllerPhase = None):
        event = ScalingEvent(
            timestamp=now,
            from_state=from_state,
            to_state=to_state or from_state,
            reason=reason,
            old_capacity=old_capacity,
            new_capacity=new_capacity,
        )
        logger.info(f"[{self.fleet_name}] {event.from_state.value} -> {event.to_state.value}: {reason} "
                    f"({old_capacity} -> {new_capacity})",
                    extra={'scaling_event': event.as_dict()})
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Scaling event listener failed: {e}", exc_info=True)

    def _result(self, now: float, action: str, sample_value: float = None) -> TickResult:
        return TickResult(now, action, self.phase, self.desired_capacity, sample_value)

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view of everything the controller needs to resume."""
        state = self.state
        return {
            'desired_capacity': state.current_desired_capacity,
            'phase': self.phase.value,
            'last_scale_up_at': state.last_scale_up_at,
            'last_scale_down_at': state.last_scale_down_at,
            'pending_apply': self.pending_apply,
            'recheck_pending': self.recheck_pending,
            'last_sample_at': self.last_sample_at,
            'alarms': {
                SCALE_UP_ALARM: self.scale_up_evaluator.snapshot(),
                SCALE_DOWN_ALARM: self.scale_down_evaluator.snapshot(),
            },
        }

    def restore(self, data: Dict[str, Any]):
        """Resume from a snapshot produced by `snapshot`."""
        desired_capacity = int(data['desired_capacity'])
        self.desired_capacity = self.policy.bounds.clamp(desired_capacity)
        self.phase = ControllerPhase(data.get('phase', ControllerPhase.STEADY.value))
        self.cooldowns.restore(Direction.UP, data.get('last_scale_up_at'))
        self.cooldowns.restore(Direction.DOWN, data.get('last_scale_down_at'))
        self.pending_apply = bool(data.get('pending_apply')) or self.desired_capacity != desired_capacity
        self.recheck_pending = bool(data.get('recheck_pending'))
        self.last_sample_at = data.get('last_sample_at')

        alarms = data.get('alarms', {})
        self.scale_up_evaluator.restore(alarms.get(SCALE_UP_ALARM, {}))
        self.scale_down_evaluator.restore(alarms.get(SCALE_DOWN_ALARM, {}))
        logger.info(f"Restored controller state for {self.fleet_name}: {self.phase.value}, "
                    f"{self.desired_capacity} tasks")
