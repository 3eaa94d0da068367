import logging
from datetime import datetime, timedelta, timezone

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from retry import retry

RETRIES_NUMBER = 3
REGION = 'us-east-1'
DEFAULT_CALL_TIMEOUT = 10

logger = logging.getLogger(__name__)


class AWSWrapper:
    """
    Wrapper class for AWS operations with retry capabilities and bounded call timeouts
    """

    def __init__(self, aws_access_key_id: str = None, aws_secret_access_key: str = None,
                 aws_session_token: str = None, sso_profile_name: str = None,
                 region_name: str = REGION, call_timeout: int = DEFAULT_CALL_TIMEOUT):
        self._region_name = region_name
        self._call_timeout = call_timeout
        self._clients = {}
        self._session = self._create_boto_session(aws_access_key_id, aws_secret_access_key,
                                                  aws_session_token, sso_profile_name)

    @retry(exceptions=ClientError, tries=RETRIES_NUMBER, delay=3)
    def _create_boto_session(self, aws_access_key_id: str = None, aws_secret_access_key: str = None,
                             aws_session_token: str = None, sso_profile_name: str = None):
        logger.debug("Creating boto3 session via " + ("SSO profile name" if sso_profile_name else "AWS access key"))
        return boto3.session.Session(profile_name=sso_profile_name, region_name=self._region_name) \
            if sso_profile_name else boto3.session.Session(aws_access_key_id, aws_secret_access_key,
                                                           aws_session_token, region_name=self._region_name)

    @retry(exceptions=ClientError, tries=RETRIES_NUMBER, delay=3)
    def create_aws_client(self, service_name: str, region_name: str = None, config=None):
        """
        Create (or reuse) a boto3 client with retry capability.

        Clients get connect/read timeouts so a slow AWS endpoint cannot block a
        scaling tick indefinitely; a timeout surfaces as a botocore error.

        Args:
            service_name: AWS service name ('ecs', 's3', 'cloudwatch', etc.)
            region_name: Optional AWS region override
            config: Optional botocore configuration

        Returns:
            Boto3 client for the requested service
        """
        cache_key = (service_name, region_name)
        if config is None and cache_key in self._clients:
            return self._clients[cache_key]

        logger.debug(f'creating aws client for: {service_name}')

        default_config = Config(
            connect_timeout=self._call_timeout,
            read_timeout=self._call_timeout,
            retries={'max_attempts': 2, 'mode': 'standard'}
        )
        client = self._session.client(service_name=service_name, region_name=region_name,
                                      config=config or default_config)
        if config is None:
            self._clients[cache_key] = client
        return client

    def get_file_content_from_s3_bucket(self, bucket_name: str, file_key: str):
        """
        Get file content from an S3 bucket.

        Args:
            bucket_name: S3 bucket name
            file_key: Path to the file in the bucket

        Returns:
            bytes: The file content, or None if the key does not exist
        """
        s3_client = self.create_aws_client('s3')

        try:
            response = s3_client.get_object(Bucket=bucket_name, Key=file_key)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('NoSuchKey', '404'):
                logger.debug(f"No object at s3://{bucket_name}/{file_key}")
                return None
            raise

        return response['Body'].read()

    @retry(exceptions=ClientError, tries=RETRIES_NUMBER, delay=3)
    def upload_bytes_to_s3(self, bucket: str, file_path: str, content: bytes, metadata: dict = None):
        """
        Upload bytes directly to an S3 bucket

        Args:
            bucket: The name of the S3 bucket
            file_path: The path where the file should be stored in the bucket
            content: The bytes to upload
            metadata: Optional metadata for the S3 object
        """
        s3_client = self.create_aws_client('s3')

        try:
            s3_client.put_object(
                Bucket=bucket,
                Key=file_path,
                Body=content,
                Metadata=metadata or {}
            )
            logger.debug(f"Successfully uploaded bytes to s3://{bucket}/{file_path}")
        except ClientError as e:
            logger.error(f"Error uploading bytes to s3://{bucket}/{file_path}: {e}")
            raise

    @staticmethod
    def get_time_now() -> datetime:
        return datetime.now(timezone.utc)

    def get_time_minus_seconds(self, seconds: int) -> datetime:
        return self.get_time_now() - timedelta(seconds=seconds)
