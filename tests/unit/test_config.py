"""
Unit tests for config.py
"""
import pytest
from pydantic import ValidationError

from logdna_cloudtrail import __version__
from logdna_cloudtrail.config import (
    DEFAULT_URL,
    DeliveryConfig,
    get_config,
    normalize_tags,
    parse_flag,
)


class TestGetConfig:
    """Test building the configuration from environment variables."""

    def test_defaults_with_empty_environment(self):
        config = get_config({})

        assert config.key is None
        assert config.hostname is None
        assert config.tags is None
        assert config.app is None
        assert config.level is None
        assert config.log_raw_event is False
        assert config.url == DEFAULT_URL
        assert config.max_request_timeout_ms == 30000
        assert config.free_socket_timeout_ms == 300000
        assert config.max_request_retries == 5
        assert config.request_retry_interval_ms == 100
        assert config.max_concurrency == 20
        assert config.metrics_namespace is None
        assert config.user_agent == f"logdna-cloudtrail-forwarder/{__version__}"

    def test_all_options(self):
        config = get_config({
            'LOGDNA_KEY': 'abc123',
            'LOGDNA_HOSTNAME': 'audit-host',
            'LOGDNA_TAGS': ' prod , audit,, security ',
            'LOGDNA_APP': 'trail',
            'LOGDNA_LEVEL': 'WARN',
            'LOG_RAW_EVENT': 'YES',
            'LOGDNA_URL': 'https://logs.example.test/ingest',
            'LOGDNA_MAX_REQUEST_TIMEOUT': '5000',
            'LOGDNA_FREE_SOCKET_TIMEOUT': '60000',
            'LOGDNA_MAX_REQUEST_RETRIES': '3',
            'LOGDNA_REQUEST_RETRY_INTERVAL': '250',
            'LOGDNA_MAX_CONCURRENCY': '4',
            'LOGDNA_METRICS_NAMESPACE': 'CloudTrail/Forwarding',
            'AWS_REGION': 'eu-west-1',
        })

        assert config.key == 'abc123'
        assert config.hostname == 'audit-host'
        assert config.tags == 'prod,audit,security'
        assert config.app == 'trail'
        assert config.level == 'WARN'
        assert config.log_raw_event is True
        assert config.url == 'https://logs.example.test/ingest'
        assert config.max_request_timeout_ms == 5000
        assert config.free_socket_timeout_ms == 60000
        assert config.max_request_retries == 3
        assert config.request_retry_interval_ms == 250
        assert config.max_concurrency == 4
        assert config.metrics_namespace == 'CloudTrail/Forwarding'
        assert config.aws_region == 'eu-west-1'

    def test_cloudtrail_flag_changes_user_agent(self):
        config = get_config({'LOGDNA_CLOUDTRAIL': '1'})

        assert config.user_agent == f"logdna-cloudtrail/{__version__}"

    @pytest.mark.parametrize('value', ['abc', '', '0', '-5', '1.5'])
    def test_invalid_integers_fall_back_to_defaults(self, value):
        config = get_config({
            'LOGDNA_MAX_REQUEST_RETRIES': value,
            'LOGDNA_REQUEST_RETRY_INTERVAL': value,
        })

        assert config.max_request_retries == 5
        assert config.request_retry_interval_ms == 100

    def test_empty_key_is_treated_as_missing(self):
        assert get_config({'LOGDNA_KEY': ''}).key is None
        assert get_config({'LOGDNA_KEY': '  '}).key is None

    def test_reads_process_environment_by_default(self, environment_variables):
        config = get_config()

        assert config.key == 'test-ingestion-key'
        assert config.url == 'https://logs.example.test/logs/ingest'

    def test_each_call_builds_a_new_value(self):
        assert get_config({'LOGDNA_KEY': 'a'}) is not get_config({'LOGDNA_KEY': 'a'})


class TestDeliveryConfig:
    """Test the configuration model itself."""

    def test_config_is_frozen(self):
        config = DeliveryConfig(key='abc')

        with pytest.raises(ValidationError):
            config.key = 'changed'

    def test_rejects_non_positive_retries(self):
        with pytest.raises(ValidationError):
            DeliveryConfig(max_request_retries=0)

    def test_tags_normalized_on_construction(self):
        assert DeliveryConfig(tags='a , b').tags == 'a,b'
        assert DeliveryConfig(tags=' , ').tags is None


class TestHelpers:

    @pytest.mark.parametrize('value,expected', [
        ('yes', True), ('TRUE', True), ('True', True), (' yes ', True),
        ('no', False), ('1', False), ('', False), (None, False),
    ])
    def test_parse_flag(self, value, expected):
        assert parse_flag(value) is expected

    def test_normalize_tags(self):
        assert normalize_tags('one,two') == 'one,two'
        assert normalize_tags(' one ,  two ') == 'one,two'
        assert normalize_tags('') is None
        assert normalize_tags(None) is None
