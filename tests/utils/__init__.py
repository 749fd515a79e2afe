"""
Test utilities for the CloudTrail forwarder
"""

from .cloudtrail_factory import CloudTrailRecordFactory, gzip_batch, s3_notification
from .http_mocks import (
    closed_port_url,
    connection_refused,
    connection_reset,
    connection_reset_by_peer,
    hang_up_server,
    host_unreachable,
    make_response,
    name_not_resolved,
)
