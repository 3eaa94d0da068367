import unittest
from unittest import mock

from stepscaler.controller import CapacityController
from stepscaler.errors import RecoverableError, SourceUnavailable
from stepscaler.models import (
    AlarmThreshold,
    CapacityBounds,
    Comparison,
    ControllerPhase,
    Direction,
    Sample,
    ScalingPolicy,
    StepAdjustment,
)


def make_policy(high=70.0, low=30.0, up_periods=2, down_periods=2, up_step=1, down_step=-1,
                up_cooldown=60, down_cooldown=300, min_tasks=1, max_tasks=3):
    return ScalingPolicy(
        scale_up_alarm=AlarmThreshold(Comparison.GREATER_THAN, high, up_periods),
        scale_down_alarm=AlarmThreshold(Comparison.LESS_THAN, low, down_periods),
        scale_up_step=StepAdjustment(Direction.UP, up_step, up_cooldown),
        scale_down_step=StepAdjustment(Direction.DOWN, down_step, down_cooldown),
        bounds=CapacityBounds(min_tasks, max_tasks),
    )


class FakeSampler:
    """Serves queued values; None means no fresh datapoint."""

    def __init__(self):
        self.values = []
        self.now = 0

    def push(self, *values):
        self.values.extend(values)

    def next_sample(self):
        value = self.values.pop(0)
        if value is None:
            raise SourceUnavailable("no datapoints")
        return Sample(value, self.now)


class FakeSetter:
    """Records applied capacities; a fleet whose observed capacity is the last value set."""

    def __init__(self):
        self.calls = []
        self.capacity = None
        self.failures = 0

    def set_desired_capacity(self, capacity):
        self.calls.append(capacity)
        if self.failures:
            self.failures -= 1
            raise RecoverableError("fleet unreachable")
        self.capacity = capacity
        return {'service': {'desiredCount': capacity}}


class ControllerTestCase(unittest.TestCase):

    def make_controller(self, initial_capacity=1, **policy_args):
        self.sampler = FakeSampler()
        self.setter = FakeSetter()
        self.events = []
        return CapacityController(make_policy(**policy_args), self.sampler, self.setter, initial_capacity,
                                  fleet_name='test-cluster/test-service', clock=lambda: 0,
                                  listeners=[self.events.append])

    def feed(self, controller, timed_values):
        """Tick once per (timestamp, value) pair and return the results."""
        results = []
        for now, value in timed_values:
            self.sampler.now = now
            self.sampler.push(value)
            results.append(controller.tick(now=now))
        return results


class TestScalingScenarios(ControllerTestCase):
    """Tests for the high=70/low=30, two-period, bounds [1, 3] scenarios."""

    def test_scale_up_after_two_high_samples(self):
        controller = self.make_controller(initial_capacity=1)

        first, second = self.feed(controller, [(0, 75), (60, 80)])

        self.assertEqual(first.action, 'none')
        self.assertEqual(first.desired_capacity, 1)
        self.assertEqual(second.action, 'scaled_up')
        self.assertEqual(controller.desired_capacity, 2)
        self.assertEqual(controller.phase, ControllerPhase.COOLDOWN_UP)
        self.assertEqual(controller.state.last_scale_up_at, 60)
        self.assertEqual(self.setter.calls, [2])

    def test_scale_down_from_max(self):
        controller = self.make_controller(initial_capacity=3)

        self.feed(controller, [(0, 20), (60, 25)])

        self.assertEqual(controller.desired_capacity, 2)
        self.assertEqual(controller.phase, ControllerPhase.COOLDOWN_DOWN)
        self.assertEqual(controller.state.last_scale_down_at, 60)
        self.assertEqual(self.setter.calls, [2])

    def test_scale_down_at_min_starts_cooldown_without_update(self):
        controller = self.make_controller(initial_capacity=1)

        results = self.feed(controller, [(0, 20), (60, 25)])

        self.assertEqual(results[-1].action, 'scaled_down')
        self.assertEqual(controller.desired_capacity, 1)
        self.assertEqual(self.setter.calls, [])
        self.assertEqual(controller.state.last_scale_down_at, 60)
        self.assertEqual(controller.phase, ControllerPhase.COOLDOWN_DOWN)

        event = self.events[-1]
        self.assertEqual(event.from_state, ControllerPhase.STEADY)
        self.assertEqual(event.to_state, ControllerPhase.COOLDOWN_DOWN)
        self.assertEqual((event.old_capacity, event.new_capacity), (1, 1))

    def test_scale_up_at_max_is_clamped(self):
        controller = self.make_controller(initial_capacity=3, up_step=5)

        self.feed(controller, [(0, 90), (60, 95)])

        self.assertEqual(controller.desired_capacity, 3)
        self.assertEqual(self.setter.calls, [])
        self.assertEqual(controller.phase, ControllerPhase.COOLDOWN_UP)

    def test_large_step_clamped_into_bounds(self):
        controller = self.make_controller(initial_capacity=2, up_step=10)

        self.feed(controller, [(0, 90), (60, 95)])

        self.assertEqual(controller.desired_capacity, 3)
        self.assertEqual(self.setter.calls, [3])

    def test_values_between_thresholds_do_nothing(self):
        controller = self.make_controller(initial_capacity=2)

        results = self.feed(controller, [(0, 50), (60, 65), (120, 35)])

        self.assertEqual([r.action for r in results], ['none', 'none', 'none'])
        self.assertEqual(self.setter.calls, [])
        self.assertEqual(self.events, [])


class TestCooldowns(ControllerTestCase):
    """Tests for cooldown suppression and the re-check on expiry."""

    def test_second_alarm_within_cooldown_is_suppressed(self):
        controller = self.make_controller(initial_capacity=1, up_periods=1)

        results = self.feed(controller, [(0, 80), (15, 50), (30, 80)])

        self.assertEqual(results[0].action, 'scaled_up')
        self.assertEqual(results[2].action, 'suppressed')
        self.assertEqual(self.setter.calls, [2])
        self.assertEqual(controller.desired_capacity, 2)

        suppressed = self.events[-1]
        self.assertEqual(suppressed.from_state, ControllerPhase.COOLDOWN_UP)
        self.assertEqual(suppressed.to_state, ControllerPhase.COOLDOWN_UP)
        self.assertIn('suppressed', suppressed.reason)
        self.assertEqual((suppressed.old_capacity, suppressed.new_capacity), (2, 2))

    def test_alarm_still_active_after_cooldown_scales_again(self):
        controller = self.make_controller(initial_capacity=1, up_periods=1)

        results = self.feed(controller, [(0, 80), (15, 50), (30, 80), (61, 85)])

        self.assertEqual(results[-1].action, 'scaled_up')
        self.assertEqual(self.setter.calls, [2, 3])
        self.assertEqual(controller.state.last_scale_up_at, 61)

        expiry = [e for e in self.events if e.to_state == ControllerPhase.STEADY]
        self.assertEqual(len(expiry), 1)
        self.assertEqual(expiry[0].from_state, ControllerPhase.COOLDOWN_UP)

    def test_persistent_alarm_rechecked_without_new_transition(self):
        controller = self.make_controller(initial_capacity=1)

        results = self.feed(controller, [(0, 75), (60, 80), (120, 85), (180, 90)])

        self.assertEqual([r.action for r in results], ['none', 'scaled_up', 'scaled_up', 'scaled_up'])
        # Saturated at max: the cooldown restarts but ECS is not called again
        self.assertEqual(self.setter.calls, [2, 3])

    def test_alarm_cleared_before_expiry_does_not_scale(self):
        controller = self.make_controller(initial_capacity=1)

        results = self.feed(controller, [(0, 75), (60, 80), (90, 50), (120, 50)])

        self.assertEqual(results[-1].action, 'none')
        self.assertEqual(controller.phase, ControllerPhase.STEADY)
        self.assertEqual(self.setter.calls, [2])

    def test_scale_down_suppressed_during_up_cooldown_then_rechecked(self):
        controller = self.make_controller(initial_capacity=2, up_periods=1, down_periods=1,
                                          up_cooldown=60)

        results = self.feed(controller, [(0, 80), (30, 20), (60, 20)])

        self.assertEqual([r.action for r in results], ['scaled_up', 'suppressed', 'scaled_down'])
        self.assertEqual(self.setter.calls, [3, 2])
        self.assertEqual(controller.phase, ControllerPhase.COOLDOWN_DOWN)

    def test_scale_up_waits_out_scale_down_cooldown(self):
        controller = self.make_controller(initial_capacity=3, up_periods=1, down_periods=1, max_tasks=5)

        results = self.feed(controller, [(0, 20), (60, 90), (120, 90), (299, 90), (300, 90)])

        self.assertEqual([r.action for r in results],
                         ['scaled_down', 'suppressed', 'none', 'none', 'scaled_up'])
        self.assertEqual(self.setter.calls, [2, 3])
        self.assertEqual(controller.phase, ControllerPhase.COOLDOWN_UP)

    def test_long_scale_down_cooldown(self):
        controller = self.make_controller(initial_capacity=3, down_periods=1)

        results = self.feed(controller, [(0, 20), (60, 20), (299, 20), (300, 20)])

        self.assertEqual([r.action for r in results], ['scaled_down', 'none', 'none', 'scaled_down'])
        self.assertEqual(self.setter.calls, [2, 1])

    def test_recheck_waits_for_fresh_sample(self):
        controller = self.make_controller(initial_capacity=1, up_periods=1)

        results = self.feed(controller, [(0, 80), (60, None), (120, 85)])

        self.assertEqual(results[1].action, 'no_data')
        self.assertEqual(results[1].phase, ControllerPhase.STEADY)
        self.assertTrue(controller.recheck_pending)
        self.assertEqual(results[2].action, 'scaled_up')
        self.assertEqual(self.setter.calls, [2, 3])


class TestErrorPaths(ControllerTestCase):
    """Tests for per-tick failures."""

    def test_missing_sample_is_a_noop_tick(self):
        controller = self.make_controller(initial_capacity=1)

        results = self.feed(controller, [(0, 75), (60, None), (120, 80)])

        self.assertEqual(results[1].action, 'no_data')
        self.assertIsNone(results[1].sample_value)
        # The gap neither breaks nor extends the breach streak
        self.assertEqual(results[2].action, 'scaled_up')

    def test_invalid_sample_is_dropped(self):
        controller = self.make_controller(initial_capacity=1)

        results = self.feed(controller, [(0, 75), (60, float('nan')), (120, 80)])

        self.assertEqual(results[1].action, 'invalid_sample')
        self.assertEqual(controller.scale_up_evaluator.consecutive_breaches, 2)
        self.assertEqual(results[2].action, 'scaled_up')

    def test_failed_update_keeps_intent_and_retries(self):
        controller = self.make_controller(initial_capacity=1)
        self.setter.failures = 1

        self.feed(controller, [(0, 75), (60, 80)])

        self.assertEqual(controller.desired_capacity, 2)
        self.assertTrue(controller.pending_apply)
        self.assertIsNone(self.setter.capacity)

        self.feed(controller, [(120, 50)])

        self.assertEqual(self.setter.calls, [2, 2])
        self.assertEqual(self.setter.capacity, 2)
        self.assertFalse(controller.pending_apply)

    def test_failed_retry_not_repeated_by_clamped_scale(self):
        controller = self.make_controller(initial_capacity=7, up_periods=1)
        self.setter.failures = 2

        results = self.feed(controller, [(0, 95)])

        self.assertEqual(results[0].action, 'scaled_up')
        self.assertEqual(self.setter.calls, [3])
        self.assertTrue(controller.pending_apply)

        self.feed(controller, [(60, 50), (120, 50)])

        self.assertEqual(self.setter.calls, [3, 3, 3])
        self.assertEqual(self.setter.capacity, 3)
        self.assertFalse(controller.pending_apply)

    def test_same_datapoint_counted_once(self):
        controller = self.make_controller(initial_capacity=1)
        self.sampler.push(90, 90, 90)

        results = [controller.tick(now=now) for now in (0, 60, 120)]

        self.assertEqual([r.action for r in results], ['none', 'no_data', 'no_data'])
        self.assertEqual(controller.scale_up_evaluator.consecutive_breaches, 1)
        self.assertEqual(self.setter.calls, [])

        self.feed(controller, [(180, 92)])

        self.assertEqual(self.setter.calls, [2])

    def test_overlapping_alarms_prefer_scale_up(self):
        controller = self.make_controller(initial_capacity=2, high=30.0, low=70.0,
                                          up_periods=1, down_periods=1)

        with self.assertLogs('stepscaler.controller', level='ERROR') as logs:
            results = self.feed(controller, [(0, 50)])

        self.assertEqual(results[0].action, 'scaled_up')
        self.assertEqual(controller.desired_capacity, 3)
        self.assertIn('Configuration warning', logs.output[0])

    def test_listener_failure_does_not_break_tick(self):
        controller = self.make_controller(initial_capacity=1, up_periods=1)
        controller.add_listener(mock.Mock(side_effect=RuntimeError("sink down")))

        results = self.feed(controller, [(0, 80)])

        self.assertEqual(results[0].action, 'scaled_up')
        self.assertEqual(len(self.events), 1)


class TestControllerState(ControllerTestCase):
    """Tests for bounds, idempotence and snapshots."""

    def test_initial_capacity_outside_bounds_is_clamped_and_applied(self):
        controller = self.make_controller(initial_capacity=7)

        self.assertEqual(controller.desired_capacity, 3)
        self.assertTrue(controller.pending_apply)
        self.assertEqual(self.events[0].old_capacity, 7)

        self.feed(controller, [(0, 50)])

        self.assertEqual(self.setter.calls, [3])

    def test_capacity_always_within_bounds(self):
        controller = self.make_controller(initial_capacity=2, up_periods=1, down_periods=1,
                                          up_cooldown=0, down_cooldown=0)
        values = [90, 95, 99, 10, 5, 1, 0, 80, 20, 90, 90, 5]

        for i, value in enumerate(values):
            self.feed(controller, [(i * 60, value)])
            self.assertGreaterEqual(controller.desired_capacity, 1)
            self.assertLessEqual(controller.desired_capacity, 3)

        for capacity in self.setter.calls:
            self.assertTrue(1 <= capacity <= 3)

    def test_snapshot_round_trip_resumes_cooldown(self):
        controller = self.make_controller(initial_capacity=1)
        self.feed(controller, [(0, 75), (60, 80)])

        resumed = CapacityController(make_policy(), self.sampler, self.setter, 1, clock=lambda: 0)
        resumed.restore(controller.snapshot())

        self.assertEqual(resumed.desired_capacity, 2)
        self.assertEqual(resumed.phase, ControllerPhase.COOLDOWN_UP)
        self.assertEqual(resumed.state.last_scale_up_at, 60)
        self.assertTrue(resumed.scale_up_evaluator.in_alarm)

        results = self.feed(resumed, [(60, 90), (100, 90), (120, 90)])

        # The datapoint already folded in before the snapshot is not counted again
        self.assertEqual([r.action for r in results], ['no_data', 'none', 'scaled_up'])


if __name__ == '__main__':
    unittest.main()
