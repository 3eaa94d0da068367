import json
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def state_key(ecs_cluster: str, service_name: str) -> str:
    return f"autoscaling-state/{ecs_cluster}/{service_name}/controller.json"


def load_controller_state(aws_wrapper, s3_config_bucket, ecs_cluster, service_name) -> Optional[Dict[str, Any]]:
    """
    Get the last saved controller snapshot from S3.

    Args:
        aws_wrapper: AWS wrapper instance
        s3_config_bucket: S3 bucket name for state storage
        ecs_cluster: ECS cluster name
        service_name: ECS service name

    Returns:
        dict: Controller snapshot, or None if there is no usable saved state
    """
    key = state_key(ecs_cluster, service_name)
    logger.info(f"Retrieving controller state from {s3_config_bucket}/{key}")

    try:
        file_content = aws_wrapper.get_file_content_from_s3_bucket(s3_config_bucket, key)
    except (ClientError, BotoCoreError) as e:
        logger.warning(f"Error getting scaling state from S3: {e}")
        return None

    if not file_content:
        logger.info(f"No previous scaling state found for {ecs_cluster}/{service_name}")
        return None

    try:
        state_data = json.loads(file_content.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Error parsing JSON state data: {e}")
        return None

    if state_data.get('version') != STATE_VERSION or 'controller' not in state_data:
        logger.warning(f"Ignoring scaling state with unsupported version {state_data.get('version')}")
        return None

    saved_at = state_data.get('saved_at', 0.0)
    readable_time = datetime.fromtimestamp(saved_at).strftime('%Y-%m-%d %H:%M:%S')
    logger.info(f"Retrieved controller state saved at {saved_at} ({readable_time})")
    return state_data['controller']


def save_controller_state(aws_wrapper, s3_config_bucket, ecs_cluster, service_name, snapshot: Dict[str, Any]):
    """
    Save a controller snapshot to S3.

    Failures are logged, not raised: losing one save only costs the alarm
    window, the fleet's desired count is re-read on the next start.
    """
    key = state_key(ecs_cluster, service_name)
    now = time.time()

    state_data = {
        'version': STATE_VERSION,
        'saved_at': now,
        'cluster': ecs_cluster,
        'service': service_name,
        'controller': snapshot,
    }

    try:
        aws_wrapper.upload_bytes_to_s3(
            bucket=s3_config_bucket,
            file_path=key,
            content=json.dumps(state_data).encode('utf-8'),
            metadata={'ContentType': 'application/json'}
        )
        logger.info(f"Saved controller state to s3://{s3_config_bucket}/{key}")
    except (ClientError, BotoCoreError) as e:
        logger.warning(f"Error writing controller state to S3: {e}")
