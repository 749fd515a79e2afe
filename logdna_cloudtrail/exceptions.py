"""
Exception hierarchy for the CloudTrail forwarder
"""

from typing import Optional


class NonRecoverableError(Exception):
    """Exception for errors that should not be retried (e.g., corrupt batch, missing key)"""
    pass


class ConfigurationError(NonRecoverableError):
    """Exception for invalid or incomplete forwarder configuration"""
    pass


class MissingCredentialError(ConfigurationError):
    """Exception for when no LogDNA ingestion key is configured"""
    pass


class InvalidS3NotificationError(NonRecoverableError):
    """Exception for invalid S3 notifications that cannot be processed"""
    pass


class DecodeError(NonRecoverableError):
    """Exception for batches that are not gzip-compressed CloudTrail JSON"""
    pass


class FetchError(Exception):
    """Exception for failures reading a batch from S3 (retried by the platform)"""
    pass


class DeliveryError(Exception):
    """Base exception for a failed delivery of a single log line"""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class TransientTransportError(DeliveryError):
    """Transport failure whose code is on the retry allow-list"""
    pass


class ServerError(TransientTransportError):
    """Ingestion endpoint answered with a 5xx status"""

    def __init__(self, message: str, status_code: int):
        super().__init__(message, code='INTERNAL_SERVER_ERROR')
        self.status_code = status_code


class TerminalTransportError(DeliveryError):
    """Transport failure that is not worth retrying"""
    pass


class DeliveryFailure(DeliveryError):
    """Raised when every allowed attempt failed with a retryable error"""

    def __init__(self, message: str, last_error: DeliveryError, attempts: int):
        super().__init__(message, code=last_error.code)
        self.last_error = last_error
        self.attempts = attempts
