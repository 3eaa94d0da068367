import os
import logging
import json

# Structured fields passed through `extra` that belong in the JSON record
EVENT_FIELDS = ('scaling_event',)


def setup_logging(level=None):
    """
    Set up logging with JSON formatting for better integration with CloudWatch.

    Args:
        level: Optional log level override (default: uses LOG_LEVEL env var or INFO)
    """
    if level is None:
        level = os.environ.get('LOG_LEVEL', 'INFO').upper()

    numeric_level = getattr(logging, level, logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s [%(levelname)s] %(name)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Structured scaling events are only useful downstream as JSON
    if os.environ.get('AWS_EXECUTION_ENV') is not None:
        root_logger = logging.getLogger()
        root_logger.setLevel(numeric_level)
        for handler in root_logger.handlers:
            handler.setFormatter(JsonFormatter())

    # Silence noisy loggers
    logging.getLogger('boto3').setLevel(logging.WARNING)
    logging.getLogger('botocore').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    logging.debug("Logging initialized")


class JsonFormatter(logging.Formatter):
    """
    Format logs as JSON for better integration with CloudWatch Logs Insights.

    Scaling decisions attach their structured event as `scaling_event`; it is
    emitted as a top-level JSON field so log queries can filter on it.
    """

    def format(self, record):
        log_record = {
            'timestamp': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'name': record.name,
            'message': record.getMessage(),
            'file': record.pathname,
            'line': record.lineno,
            'function': record.funcName
        }

        if record.exc_info:
            log_record['exception'] = self.formatException(record.exc_info)

        for field in EVENT_FIELDS:
            if hasattr(record, field):
                log_record[field] = getattr(record, field)

        return json.dumps(log_record, default=str)
