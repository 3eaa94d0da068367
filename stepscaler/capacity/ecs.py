import logging
from typing import Any, Dict

from botocore.exceptions import BotoCoreError, ClientError

from stepscaler.errors import RecoverableError

logger = logging.getLogger(__name__)


class EcsCapacitySetter:
    """Apply desired task counts to an ECS service."""

    def __init__(self, aws_wrapper, cluster_name: str, service_name: str):
        self.aws_wrapper = aws_wrapper
        self.cluster_name = cluster_name
        self.service_name = service_name

    def set_desired_capacity(self, capacity: int) -> Dict[str, Any]:
        """
        Update the ECS service with a new desired count.

        ECS treats repeated updates with the same desiredCount as a no-op, so
        calling this twice with one value yields a single observable capacity.

        Args:
            capacity: New desired task count

        Returns:
            dict: ECS update_service response

        Raises:
            RecoverableError: If the service update fails or times out
        """
        try:
            ecs_client = self.aws_wrapper.create_aws_client('ecs')

            response = ecs_client.update_service(
                cluster=self.cluster_name,
                service=self.service_name,
                desiredCount=capacity
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error updating service {self.service_name}: {e}", exc_info=True)
            raise RecoverableError(f"Could not set {self.service_name} to {capacity} tasks: {e}")

        logger.info(f"Updated service {self.service_name} to {capacity} tasks")
        return response

    def get_current_capacity(self) -> int:
        """
        Read the service's current desired count.

        Raises:
            RecoverableError: If the service cannot be described or does not exist
        """
        try:
            ecs_client = self.aws_wrapper.create_aws_client('ecs')
            service_response = ecs_client.describe_services(
                cluster=self.cluster_name,
                services=[self.service_name]
            )
        except (ClientError, BotoCoreError) as e:
            raise RecoverableError(f"Could not describe service {self.service_name}: {e}")

        if not service_response['services']:
            raise RecoverableError(f"Service {self.service_name} not found in cluster {self.cluster_name}")

        service = service_response['services'][0]
        current_task_count = service.get('desiredCount', 0)
        running_task_count = service.get('runningCount', 0)
        logger.info(f"Current ECS state - desired: {current_task_count}, running: {running_task_count}")
        return current_task_count
