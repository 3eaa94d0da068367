"""
Lambda function entry point for AWS Lambda deployments.
"""

# Configure logging first
from stepscaler.common.logger import setup_logging

setup_logging()

from stepscaler.main import lambda_handler


# The handler is specified in the Lambda configuration as "lambda_function.handler"
def handler(event, context):
    """
    AWS Lambda function handler that delegates to the main lambda_handler.

    Args:
        event: AWS Lambda event object
        context: AWS Lambda context object

    Returns:
        Result of one scaling tick
    """
    return lambda_handler(event, context)
