"""
Test configuration and fixtures for unit tests
"""
import os
from unittest.mock import patch

import boto3
import pytest
from moto import mock_aws

from logdna_cloudtrail import delivery
from logdna_cloudtrail.config import DeliveryConfig
from tests.utils import CloudTrailRecordFactory, make_response


@pytest.fixture
def aws_credentials():
    """Mocked AWS Credentials for moto."""
    os.environ['AWS_ACCESS_KEY_ID'] = 'testing'
    os.environ['AWS_SECRET_ACCESS_KEY'] = 'testing'
    os.environ['AWS_SECURITY_TOKEN'] = 'testing'
    os.environ['AWS_SESSION_TOKEN'] = 'testing'
    os.environ['AWS_DEFAULT_REGION'] = 'us-east-1'


@pytest.fixture
def mock_aws_services(aws_credentials):
    """Mock all AWS services."""
    with mock_aws():
        yield


@pytest.fixture
def environment_variables():
    """Set up forwarder environment variables."""
    test_env = {
        'LOGDNA_KEY': 'test-ingestion-key',
        'LOGDNA_URL': 'https://logs.example.test/logs/ingest',
        'LOGDNA_REQUEST_RETRY_INTERVAL': '100',
        'LOGDNA_MAX_REQUEST_RETRIES': '5',
        'AWS_REGION': 'us-east-1',
    }
    cleared = ['LOGDNA_HOSTNAME', 'LOGDNA_TAGS', 'LOGDNA_APP', 'LOGDNA_LEVEL',
               'LOGDNA_CLOUDTRAIL', 'LOG_RAW_EVENT', 'LOGDNA_METRICS_NAMESPACE']

    # Store original values
    original_env = {}
    for key in list(test_env) + cleared:
        original_env[key] = os.environ.get(key)
    for key, value in test_env.items():
        os.environ[key] = value
    for key in cleared:
        os.environ.pop(key, None)

    yield test_env

    # Restore original values
    for key, value in original_env.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


@pytest.fixture(autouse=True)
def reset_delivery_client(monkeypatch):
    """Never share the process-wide pooled client between tests."""
    monkeypatch.setattr(delivery, '_default_client', None)


@pytest.fixture
def delivery_config():
    """Configuration with a key and the stock retry policy."""
    return DeliveryConfig(key='test-ingestion-key', url='https://logs.example.test/logs/ingest')


@pytest.fixture
def mock_session():
    """Replace requests.Session inside the delivery client with a mock."""
    with patch('logdna_cloudtrail.delivery.requests.Session') as session_cls:
        session = session_cls.return_value
        session.post.return_value = make_response(200, '{"status":"ok","batchID":"abc"}')
        yield session


@pytest.fixture
def no_sleep():
    """Skip real backoff delays."""
    with patch('logdna_cloudtrail.delivery.time.sleep') as mock_sleep:
        yield mock_sleep


@pytest.fixture
def cloudtrail_factory():
    return CloudTrailRecordFactory(seed=1234)


@pytest.fixture
def s3_bucket(mock_aws_services):
    """Create an empty CloudTrail bucket."""
    s3_client = boto3.client('s3', region_name='us-east-1')
    bucket_name = 'test-cloudtrail-bucket'
    s3_client.create_bucket(Bucket=bucket_name)
    return bucket_name
