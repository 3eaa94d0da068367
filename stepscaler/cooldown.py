import logging
from datetime import datetime
from typing import Dict, Optional

from stepscaler.models import Direction

logger = logging.getLogger(__name__)


class CooldownTracker:
    """Independent cooldown timers for scale-up and scale-down actions."""

    def __init__(self, scale_out_cooldown: int, scale_in_cooldown: int):
        self._cooldowns = {Direction.UP: scale_out_cooldown, Direction.DOWN: scale_in_cooldown}
        self._last_action_at: Dict[Direction, Optional[float]] = {Direction.UP: None, Direction.DOWN: None}

    def cooldown_for(self, direction: Direction) -> int:
        return self._cooldowns[direction]

    def last_action_at(self, direction: Direction) -> Optional[float]:
        return self._last_action_at[direction]

    def record(self, direction: Direction, now: float):
        """Start the cooldown for a direction at `now`."""
        self._last_action_at[direction] = now
        readable_time = datetime.fromtimestamp(now).strftime('%Y-%m-%d %H:%M:%S')
        logger.info(f"Recorded {direction.value} scaling action at {now} ({readable_time}), "
                    f"cooldown {self._cooldowns[direction]}s")

    def restore(self, direction: Direction, timestamp: Optional[float]):
        self._last_action_at[direction] = timestamp

    def remaining(self, direction: Direction, now: float) -> float:
        last_time = self._last_action_at[direction]
        if last_time is None:
            return 0.0
        elapsed_time = now - last_time
        return max(0.0, self._cooldowns[direction] - elapsed_time)

    def is_active(self, direction: Direction, now: float) -> bool:
        """True while now - last action < cooldown seconds."""
        return self.remaining(direction, now) > 0
