"""
Forwarder configuration read from environment variables
"""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from logdna_cloudtrail import __version__

PACKAGE_NAME = 'logdna-cloudtrail-forwarder'

DEFAULT_URL = 'https://logs.logdna.com/logs/ingest'
DEFAULT_HOSTNAME = 'logdna-cloudtrail'
DEFAULT_APP = 'cloudtrail'
DEFAULT_LEVEL = 'INFO'

MAX_REQUEST_TIMEOUT_MS = 30000
FREE_SOCKET_TIMEOUT_MS = 300000
MAX_REQUEST_RETRIES = 5
REQUEST_RETRY_INTERVAL_MS = 100
MAX_CONCURRENCY = 20


def normalize_tags(tags: Optional[str]) -> Optional[str]:
    """Trim each comma-separated tag and re-join them, dropping empty entries"""
    if not tags:
        return None
    cleaned = [tag.strip() for tag in tags.split(',') if tag.strip()]
    return ','.join(cleaned) or None


def parse_flag(value: Optional[str]) -> bool:
    """Interpret "yes"/"true" (any case) as enabled"""
    if not value:
        return False
    return value.strip().lower() in ('yes', 'true')


class DeliveryConfig(BaseModel):
    """Immutable settings shared by every delivery of one invocation"""
    model_config = ConfigDict(frozen=True)

    key: Optional[str] = Field(default=None, description="LogDNA ingestion key")
    hostname: Optional[str] = Field(default=None, description="Hostname label sent with every line")
    tags: Optional[str] = Field(default=None, description="Comma-joined tag list")
    app: Optional[str] = Field(default=None, description="Application tag override")
    level: Optional[str] = Field(default=None, description="Log level override")
    log_raw_event: bool = Field(default=False, description="Ship the raw event instead of merging metadata")
    user_agent: str = Field(default=f"{PACKAGE_NAME}/{__version__}")
    url: str = Field(default=DEFAULT_URL, description="Ingestion endpoint")
    max_request_timeout_ms: int = Field(default=MAX_REQUEST_TIMEOUT_MS, gt=0)
    free_socket_timeout_ms: int = Field(default=FREE_SOCKET_TIMEOUT_MS, gt=0)
    max_request_retries: int = Field(default=MAX_REQUEST_RETRIES, gt=0)
    request_retry_interval_ms: int = Field(default=REQUEST_RETRY_INTERVAL_MS, ge=0)
    max_concurrency: int = Field(default=MAX_CONCURRENCY, gt=0, description="Cap on simultaneous requests per batch")
    metrics_namespace: Optional[str] = Field(default=None, description="CloudWatch namespace, metrics are off when unset")
    aws_region: str = Field(default='us-east-1')

    @field_validator('key', 'hostname', 'app', 'level', 'metrics_namespace')
    @classmethod
    def blank_to_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v

    @field_validator('tags')
    @classmethod
    def validate_tags(cls, v):
        return normalize_tags(v)


def _int_env(environ: Mapping[str, str], name: str, default: int) -> int:
    # Missing, non-numeric and non-positive values fall back to the default
    try:
        value = int(environ.get(name, ''))
    except ValueError:
        return default
    return value if value > 0 else default


def get_config(environ: Optional[Mapping[str, str]] = None) -> DeliveryConfig:
    """
    Build the delivery configuration for one invocation

    Args:
        environ: Environment mapping (defaults to os.environ)

    Returns:
        A new frozen DeliveryConfig
    """
    if environ is None:
        environ = os.environ

    user_agent = f"{PACKAGE_NAME}/{__version__}"
    if environ.get('LOGDNA_CLOUDTRAIL'):
        user_agent = f"logdna-cloudtrail/{__version__}"

    return DeliveryConfig(
        key=environ.get('LOGDNA_KEY'),
        hostname=environ.get('LOGDNA_HOSTNAME'),
        tags=environ.get('LOGDNA_TAGS'),
        app=environ.get('LOGDNA_APP'),
        level=environ.get('LOGDNA_LEVEL'),
        log_raw_event=parse_flag(environ.get('LOG_RAW_EVENT')),
        user_agent=user_agent,
        url=environ.get('LOGDNA_URL') or DEFAULT_URL,
        max_request_timeout_ms=_int_env(environ, 'LOGDNA_MAX_REQUEST_TIMEOUT', MAX_REQUEST_TIMEOUT_MS),
        free_socket_timeout_ms=_int_env(environ, 'LOGDNA_FREE_SOCKET_TIMEOUT', FREE_SOCKET_TIMEOUT_MS),
        max_request_retries=_int_env(environ, 'LOGDNA_MAX_REQUEST_RETRIES', MAX_REQUEST_RETRIES),
        request_retry_interval_ms=_int_env(environ, 'LOGDNA_REQUEST_RETRY_INTERVAL', REQUEST_RETRY_INTERVAL_MS),
        max_concurrency=_int_env(environ, 'LOGDNA_MAX_CONCURRENCY', MAX_CONCURRENCY),
        metrics_namespace=environ.get('LOGDNA_METRICS_NAMESPACE'),
        aws_region=environ.get('AWS_REGION') or 'us-east-1',
    )
