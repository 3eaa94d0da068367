import logging
import signal
import threading
import time
from typing import Any, Dict

from stepscaler.aws.wrapper import AWSWrapper
from stepscaler.capacity.ecs import EcsCapacitySetter
from stepscaler.common.logger import setup_logging
from stepscaler.config import Config, build_policy, load_config, validate_config
from stepscaler.controller import CapacityController
from stepscaler.errors import ConfigurationError, RecoverableError
from stepscaler.metrics.cloudwatch import CloudWatchMetricSampler
from stepscaler.state.s3_state import load_controller_state, save_controller_state

logger = logging.getLogger(__name__)


def create_aws_wrapper(config: Config) -> AWSWrapper:
    return AWSWrapper(
        sso_profile_name=config.sso_profile,
        region_name=config.region,
        call_timeout=config.call_timeout
    )


def build_controller(config: Config, aws_wrapper: AWSWrapper, snapshot: Dict[str, Any] = None) -> CapacityController:
    """
    Wire a controller for the configured ECS service.

    The starting desired capacity comes from the snapshot when one is given,
    then INITIAL_TASKS, and otherwise the service's current desired count.

    Raises:
        ConfigurationError: If the configuration is inconsistent
        RecoverableError: If the starting capacity has to be read from ECS and that fails
    """
    validate_config(config)
    policy = build_policy(config)

    sampler = CloudWatchMetricSampler(
        aws_wrapper,
        config.cluster_name,
        config.service_name,
        namespace=config.metric_namespace,
        metric_name=config.metric_name,
        statistic=config.metric_statistic,
        period=config.metric_period,
        staleness_seconds=config.metric_staleness
    )
    setter = EcsCapacitySetter(aws_wrapper, config.cluster_name, config.service_name)

    if snapshot is not None:
        initial_capacity = int(snapshot['desired_capacity'])
    elif config.initial_tasks is not None:
        initial_capacity = config.initial_tasks
    else:
        initial_capacity = setter.get_current_capacity()

    controller = CapacityController(policy, sampler, setter, initial_capacity, fleet_name=config.fleet_name)
    if snapshot is not None:
        controller.restore(snapshot)
    return controller


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler running one scaling tick for an ECS service.

    Meant to be invoked on a schedule matching the metric period, with reserved
    concurrency of one so ticks never overlap. Controller state is kept in S3
    between invocations in S3_CONFIG_BUCKET, which is required here.

    Args:
        event: AWS Lambda event object, can contain configuration overrides
        context: AWS Lambda context object

    Returns:
        dict: Tick result with the action taken and the desired capacity
    """
    try:
        config = validate_config(load_config(event))
        if not config.s3_config_bucket:
            # Each invocation builds a fresh controller; alarm windows and cooldowns live in S3
            raise ConfigurationError("S3_CONFIG_BUCKET must be configured for Lambda deployments")
    except ConfigurationError as e:
        logger.error(f"Refusing to run with invalid configuration: {e}")
        return {"statusCode": 500, "error": str(e)}

    logger.info(f"Starting scaling tick for service {config.service_name} in cluster {config.cluster_name}")

    aws_wrapper = create_aws_wrapper(config)

    snapshot = load_controller_state(aws_wrapper, config.s3_config_bucket,
                                     config.cluster_name, config.service_name)

    try:
        controller = build_controller(config, aws_wrapper, snapshot)
    except RecoverableError as e:
        logger.error(f"Could not initialise controller, skipping tick: {e}")
        return {"statusCode": 503, "error": str(e)}

    try:
        result = controller.tick()
    except Exception as e:
        logger.error(f"Error in scaling tick: {e}", exc_info=True)
        return {"statusCode": 500, "error": str(e)}

    save_controller_state(aws_wrapper, config.s3_config_bucket, config.cluster_name,
                          config.service_name, controller.snapshot())

    return result.as_dict()


def run_forever(controller: CapacityController, period: float, stop_event: threading.Event,
                clock=time.monotonic):
    """
    Tick the controller once per period until `stop_event` is set.

    A tick already running when the stop event is set is allowed to finish; no
    new tick is started afterwards.
    """
    logger.info(f"Starting control loop for {controller.fleet_name}, period {period}s")
    while not stop_event.is_set():
        started = clock()
        try:
            controller.tick()
        except Exception as e:
            logger.error(f"Unexpected error in scaling tick: {e}", exc_info=True)
        elapsed = clock() - started
        stop_event.wait(max(0.0, period - elapsed))
    logger.info(f"Control loop for {controller.fleet_name} stopped")


def main():
    """Run the controller as a long-lived process until SIGINT or SIGTERM."""
    setup_logging()
    config = validate_config(load_config())
    aws_wrapper = create_aws_wrapper(config)
    controller = build_controller(config, aws_wrapper)

    stop_event = threading.Event()

    def _request_stop(signum, frame):
        logger.info(f"Received signal {signum}, stopping after the current tick")
        stop_event.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    run_forever(controller, config.metric_period, stop_event)


if __name__ == '__main__':
    main()
