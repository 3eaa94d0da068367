import os
from typing import Any, Callable, Dict, NamedTuple, Optional

from stepscaler.errors import ConfigurationError
from stepscaler.models import (
    AlarmThreshold,
    CapacityBounds,
    Comparison,
    Direction,
    ScalingPolicy,
    StepAdjustment,
)


class Config(NamedTuple):
    """Configuration for the autoscaler."""
    # ECS configuration
    cluster_name: str
    service_name: str
    min_tasks: int
    max_tasks: int
    initial_tasks: Optional[int]

    # Metric configuration
    metric_namespace: str
    metric_name: str
    metric_statistic: str
    metric_period: int
    metric_staleness: int

    # Alarm thresholds
    scale_up_threshold: float
    scale_down_threshold: float
    scale_up_evaluation_periods: int
    scale_down_evaluation_periods: int

    # Step adjustments and cooldowns
    scale_up_step: int
    scale_down_step: int
    scale_out_cooldown: int
    scale_in_cooldown: int

    # AWS configuration
    call_timeout: int
    region: str
    sso_profile: Optional[str]
    s3_config_bucket: Optional[str]

    @property
    def fleet_name(self) -> str:
        return f"{self.cluster_name}/{self.service_name}"


def _setting(overrides: Dict[str, Any], key: str, env_var: str, default: Any = None,
             cast: Callable[[Any], Any] = str) -> Any:
    """Read one setting, letting the event payload override the environment."""
    value = overrides.get(key)
    if value is None or value == '':
        value = os.environ.get(env_var)
    if value is None or value == '':
        return default
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid value for {key} ({env_var}): {value!r}")


def load_config(event: Dict[str, Any] = None) -> Config:
    """
    Load configuration from environment variables and optional event payload.

    Event payload values override environment variables when present.

    Args:
        event: Optional Lambda event that may contain configuration overrides
            under the 'config' key

    Returns:
        Config: Configuration object with all autoscaler settings

    Raises:
        ConfigurationError: If a numeric setting cannot be parsed
    """
    event = event or {}
    overrides = event.get('config', {})

    return Config(
        cluster_name=_setting(overrides, 'cluster_name', 'ECS_CLUSTER'),
        service_name=_setting(overrides, 'service_name', 'SERVICE_NAME'),
        min_tasks=_setting(overrides, 'min_tasks', 'MIN_TASKS', 1, int),
        max_tasks=_setting(overrides, 'max_tasks', 'MAX_TASKS', 3, int),
        initial_tasks=_setting(overrides, 'initial_tasks', 'INITIAL_TASKS', None, int),
        metric_namespace=_setting(overrides, 'metric_namespace', 'METRIC_NAMESPACE', 'AWS/ECS'),
        metric_name=_setting(overrides, 'metric_name', 'METRIC_NAME', 'CPUUtilization'),
        metric_statistic=_setting(overrides, 'metric_statistic', 'METRIC_STATISTIC', 'Average'),
        metric_period=_setting(overrides, 'metric_period', 'METRIC_PERIOD', 60, int),
        metric_staleness=_setting(overrides, 'metric_staleness', 'METRIC_STALENESS', 180, int),
        scale_up_threshold=_setting(overrides, 'scale_up_threshold', 'SCALE_UP_THRESHOLD', 70.0, float),
        scale_down_threshold=_setting(overrides, 'scale_down_threshold', 'SCALE_DOWN_THRESHOLD', 30.0, float),
        scale_up_evaluation_periods=_setting(overrides, 'scale_up_evaluation_periods',
                                             'SCALE_UP_EVALUATION_PERIODS', 2, int),
        scale_down_evaluation_periods=_setting(overrides, 'scale_down_evaluation_periods',
                                               'SCALE_DOWN_EVALUATION_PERIODS', 2, int),
        scale_up_step=_setting(overrides, 'scale_up_step', 'SCALE_UP_STEP', 1, int),
        scale_down_step=_setting(overrides, 'scale_down_step', 'SCALE_DOWN_STEP', -1, int),
        scale_out_cooldown=_setting(overrides, 'scale_out_cooldown', 'SCALE_OUT_COOLDOWN', 60, int),
        scale_in_cooldown=_setting(overrides, 'scale_in_cooldown', 'SCALE_IN_COOLDOWN', 300, int),
        call_timeout=_setting(overrides, 'call_timeout', 'CALL_TIMEOUT', 10, int),
        region=_setting(overrides, 'region', 'AWS_REGION', 'us-east-1'),
        sso_profile=_setting(overrides, 'sso_profile', 'SSO_PROFILE'),
        s3_config_bucket=_setting(overrides, 's3_config_bucket', 'S3_CONFIG_BUCKET'),
    )


def validate_config(config: Config) -> Config:
    """
    Check the configuration for inconsistent scaling parameters.

    Raises:
        ConfigurationError: On the first problem found
    """
    if not config.cluster_name or not config.service_name:
        raise ConfigurationError("ECS_CLUSTER and SERVICE_NAME must be configured")
    if config.min_tasks < 0:
        raise ConfigurationError(f"MIN_TASKS must be non-negative, got {config.min_tasks}")
    if config.max_tasks < config.min_tasks:
        raise ConfigurationError(f"MAX_TASKS ({config.max_tasks}) is lower than MIN_TASKS ({config.min_tasks})")
    if config.initial_tasks is not None and config.initial_tasks < 0:
        raise ConfigurationError(f"INITIAL_TASKS must be non-negative, got {config.initial_tasks}")
    if config.scale_up_evaluation_periods < 1 or config.scale_down_evaluation_periods < 1:
        raise ConfigurationError("Evaluation periods must be at least 1")
    if config.scale_up_threshold <= config.scale_down_threshold:
        raise ConfigurationError(
            f"SCALE_UP_THRESHOLD ({config.scale_up_threshold}) must exceed "
            f"SCALE_DOWN_THRESHOLD ({config.scale_down_threshold})")
    if config.scale_up_step <= 0:
        raise ConfigurationError(f"SCALE_UP_STEP must be positive, got {config.scale_up_step}")
    if config.scale_down_step >= 0:
        raise ConfigurationError(f"SCALE_DOWN_STEP must be negative, got {config.scale_down_step}")
    if config.scale_out_cooldown < 0 or config.scale_in_cooldown < 0:
        raise ConfigurationError("Cooldown periods must be non-negative")
    if config.metric_period <= 0 or config.metric_staleness <= 0:
        raise ConfigurationError("METRIC_PERIOD and METRIC_STALENESS must be positive")
    if config.call_timeout <= 0:
        raise ConfigurationError(f"CALL_TIMEOUT must be positive, got {config.call_timeout}")
    return config


def build_policy(config: Config) -> ScalingPolicy:
    """Translate a validated configuration into the controller's scaling policy."""
    return ScalingPolicy(
        scale_up_alarm=AlarmThreshold(Comparison.GREATER_THAN, config.scale_up_threshold,
                                      config.scale_up_evaluation_periods),
        scale_down_alarm=AlarmThreshold(Comparison.LESS_THAN, config.scale_down_threshold,
                                        config.scale_down_evaluation_periods),
        scale_up_step=StepAdjustment(Direction.UP, config.scale_up_step, config.scale_out_cooldown),
        scale_down_step=StepAdjustment(Direction.DOWN, config.scale_down_step, config.scale_in_cooldown),
        bounds=CapacityBounds(config.min_tasks, config.max_tasks),
    )
