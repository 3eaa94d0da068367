import logging

from botocore.exceptions import BotoCoreError, ClientError

from stepscaler.errors import SourceUnavailable
from stepscaler.models import Sample

logger = logging.getLogger(__name__)


class CloudWatchMetricSampler:
    """
    Read the latest aggregated value of an ECS service metric from CloudWatch.

    Only datapoints newer than `staleness_seconds` are considered; when none
    exist the sampler raises SourceUnavailable instead of guessing a value.
    """

    def __init__(self, aws_wrapper, cluster_name: str, service_name: str,
                 namespace: str = 'AWS/ECS', metric_name: str = 'CPUUtilization',
                 statistic: str = 'Average', period: int = 60, staleness_seconds: int = 180):
        self.aws_wrapper = aws_wrapper
        self.cluster_name = cluster_name
        self.service_name = service_name
        self.namespace = namespace
        self.metric_name = metric_name
        self.statistic = statistic
        self.period = period
        self.staleness_seconds = staleness_seconds

    def next_sample(self) -> Sample:
        """
        Get the most recent datapoint within the staleness budget.

        Returns:
            Sample: Metric value and the datapoint's epoch timestamp

        Raises:
            SourceUnavailable: If CloudWatch fails, times out, or has no fresh datapoint
        """
        try:
            cloudwatch_client = self.aws_wrapper.create_aws_client('cloudwatch')
            response = cloudwatch_client.get_metric_statistics(
                Namespace=self.namespace,
                MetricName=self.metric_name,
                Dimensions=[
                    {'Name': 'ClusterName', 'Value': self.cluster_name},
                    {'Name': 'ServiceName', 'Value': self.service_name},
                ],
                StartTime=self.aws_wrapper.get_time_minus_seconds(self.staleness_seconds),
                EndTime=self.aws_wrapper.get_time_now(),
                Period=self.period,
                Statistics=[self.statistic]
            )
        except (ClientError, BotoCoreError) as e:
            raise SourceUnavailable(f"Error getting {self.metric_name} for {self.service_name}: {e}")

        datapoints = [dp for dp in response.get('Datapoints', []) if self.statistic in dp]
        if not datapoints:
            raise SourceUnavailable(f"No {self.metric_name} datapoints for {self.service_name} "
                                    f"in the last {self.staleness_seconds}s")

        latest = max(datapoints, key=lambda dp: dp['Timestamp'])
        sample = Sample(value=latest[self.statistic], timestamp=latest['Timestamp'].timestamp())

        logger.info(f"Retrieved {self.namespace} {self.metric_name} {self.statistic} for "
                    f"{self.cluster_name}/{self.service_name}: {sample.value}")
        return sample
