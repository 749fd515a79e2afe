"""
Delivery of normalized log lines to the LogDNA ingestion endpoint

Each line is POSTed on its own with a bounded retry loop. Transport errors
are reduced to node-style error codes so the retry allow-list reads the same
as the ingestion client documentation.
"""

import errno
import json
import socket
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import NameResolutionError

from logdna_cloudtrail.config import (
    DEFAULT_APP,
    DEFAULT_HOSTNAME,
    DEFAULT_LEVEL,
    DeliveryConfig,
)
from logdna_cloudtrail.exceptions import (
    DeliveryError,
    DeliveryFailure,
    MissingCredentialError,
    ServerError,
    TerminalTransportError,
    TransientTransportError,
)
from logdna_cloudtrail.logger import get_logger

logger = get_logger(__name__)

INTERNAL_SERVER_ERROR = 500

# Transport error codes that are worth another attempt
RETRYABLE_ERROR_CODES = frozenset({
    'ECONNRESET',
    'EHOSTUNREACH',
    'ETIMEDOUT',
    'ESOCKETTIMEDOUT',
    'ECONNREFUSED',
    'ENOTFOUND',
})


@dataclass(frozen=True)
class LogLine:
    """One normalized CloudTrail record ready for shipping"""
    timestamp: Any
    line: Any
    level: str = DEFAULT_LEVEL
    app: str = DEFAULT_APP


def build_payload(log_line: LogLine) -> Dict[str, Any]:
    """
    Build the single-line ingestion envelope

    The timestamp key is left out entirely when the record had none.
    """
    entry = {}
    if log_line.timestamp is not None:
        entry['timestamp'] = log_line.timestamp
    entry['line'] = log_line.line
    entry['level'] = log_line.level
    entry['app'] = log_line.app
    return {'lines': [entry]}


def build_params(config: DeliveryConfig) -> Dict[str, str]:
    """Query string parameters for an ingestion request"""
    params = {}
    if config.tags:
        params['tags'] = config.tags
    params['hostname'] = config.hostname or DEFAULT_HOSTNAME
    params['apikey'] = config.key
    return params


def build_headers(config: DeliveryConfig) -> Dict[str, str]:
    return {
        'Content-Type': 'application/json; charset=UTF-8',
        'User-Agent': config.user_agent,
    }


def _error_chain(error: BaseException) -> Iterator[BaseException]:
    """Walk an exception and everything it wraps, breadth first"""
    seen = set()
    pending = [error]
    while pending:
        current = pending.pop(0)
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current

        # urllib3's MaxRetryError keeps the underlying failure on .reason
        reason = getattr(current, 'reason', None)
        if isinstance(reason, BaseException):
            pending.append(reason)
        pending.extend(arg for arg in current.args if isinstance(arg, BaseException))
        pending.append(current.__cause__)
        pending.append(current.__context__)


def transport_error_code(error: BaseException) -> str:
    """
    Reduce a requests/urllib3/socket failure to a node-style error code

    Args:
        error: Exception raised while sending a request

    Returns:
        Code such as ECONNRESET or ENOTFOUND, otherwise the errno name or,
        failing that, the exception class name. A peer hanging up before
        the response counts as ECONNRESET.
    """
    if isinstance(error, requests.exceptions.ConnectTimeout):
        return 'ETIMEDOUT'
    if isinstance(error, requests.exceptions.ReadTimeout):
        return 'ESOCKETTIMEDOUT'

    for cause in _error_chain(error):
        if isinstance(cause, (socket.gaierror, NameResolutionError)):
            return 'ENOTFOUND'
        # http.client's RemoteDisconnected is a ConnectionResetError with no errno
        if isinstance(cause, ConnectionResetError):
            return 'ECONNRESET'
        if isinstance(cause, ConnectionRefusedError):
            return 'ECONNREFUSED'
        if isinstance(cause, OSError) and cause.errno in errno.errorcode:
            return errno.errorcode[cause.errno]
        if isinstance(cause, TimeoutError):
            return 'ESOCKETTIMEDOUT'

    if isinstance(error, requests.exceptions.Timeout):
        return 'ETIMEDOUT'
    return type(error).__name__


class DeliveryClient:
    """
    Pooled HTTP client for the ingestion endpoint

    One instance is meant to live for the whole process so warm invocations
    reuse connections. The session is rebuilt once it has been idle for
    longer than the free-socket timeout.
    """

    def __init__(self, pool_size: int, free_socket_timeout_ms: int):
        self.pool_size = pool_size
        self.free_socket_timeout_ms = free_socket_timeout_ms
        self._session: Optional[requests.Session] = None
        self._last_used = 0.0
        self._lock = threading.Lock()

    def _new_session(self) -> requests.Session:
        session = requests.Session()
        adapter = HTTPAdapter(pool_connections=1, pool_maxsize=self.pool_size)
        session.mount('https://', adapter)
        session.mount('http://', adapter)
        return session

    @property
    def session(self) -> requests.Session:
        """Current pooled session, rebuilt after the idle timeout"""
        with self._lock:
            now = time.monotonic()
            idle_ms = (now - self._last_used) * 1000
            if self._session is not None and idle_ms > self.free_socket_timeout_ms:
                logger.info(f"Connection pool idle for {idle_ms:.0f}ms, recycling sockets")
                self._session.close()
                self._session = None
            if self._session is None:
                self._session = self._new_session()
            self._last_used = now
            return self._session

    def _touch(self) -> None:
        with self._lock:
            self._last_used = time.monotonic()

    def close(self) -> None:
        with self._lock:
            if self._session is not None:
                self._session.close()
                self._session = None

    def send_once(self, body: str, config: DeliveryConfig) -> str:
        """
        Make a single ingestion request and classify the outcome

        Raises:
            TransientTransportError: allow-listed transport failure or 5xx
            TerminalTransportError: any other transport failure
        """
        try:
            response = self.session.post(
                config.url,
                params=build_params(config),
                data=body.encode('utf-8'),
                headers=build_headers(config),
                timeout=config.max_request_timeout_ms / 1000.0,
            )
        except requests.exceptions.RequestException as e:
            code = transport_error_code(e)
            if code in RETRYABLE_ERROR_CODES:
                raise TransientTransportError(f"Transient transport error {code}: {str(e)}", code=code) from e
            raise TerminalTransportError(f"Transport error {code}: {str(e)}", code=code) from e
        finally:
            # Idle time counts from the end of the request, not from checkout
            self._touch()

        if response.status_code >= INTERNAL_SERVER_ERROR:
            raise ServerError(
                f"Ingestion endpoint returned HTTP {response.status_code}",
                status_code=response.status_code
            )
        if response.status_code >= 400:
            logger.warning(f"Ingestion endpoint returned HTTP {response.status_code}, treating as delivered: {response.text[:200]}")

        return response.text

    def deliver(self, log_line: LogLine, config: DeliveryConfig) -> str:
        """
        Ship one log line with retry and exponential backoff

        Args:
            log_line: Normalized line to ship
            config: Invocation configuration

        Returns:
            Response body of the successful attempt

        Raises:
            MissingCredentialError: no ingestion key configured (nothing is sent)
            TerminalTransportError: non-retryable transport failure
            DeliveryFailure: every attempt failed with a retryable error
        """
        if not config.key:
            raise MissingCredentialError('Missing LogDNA Ingestion Key')

        body = json.dumps(build_payload(log_line), default=str)
        max_attempts = config.max_request_retries
        last_error: Optional[DeliveryError] = None

        for attempt in range(max_attempts):
            try:
                result = self.send_once(body, config)
                if attempt > 0:
                    logger.info(f"Delivered log line after {attempt + 1} attempts")
                return result
            except TransientTransportError as e:
                last_error = e
                if attempt < max_attempts - 1:
                    delay_ms = config.request_retry_interval_ms * (2 ** attempt)
                    logger.warning(f"{e.code} on attempt {attempt + 1}/{max_attempts}, retrying in {delay_ms}ms")
                    time.sleep(delay_ms / 1000.0)
            except TerminalTransportError as e:
                logger.error(f"Non-retryable delivery error {e.code}: {str(e)}")
                raise

        logger.error(f"Giving up after {max_attempts} attempts, last error {last_error.code}")
        raise DeliveryFailure(
            f"Failed to deliver log line after {max_attempts} attempts: {str(last_error)}",
            last_error=last_error,
            attempts=max_attempts
        )


_default_client: Optional[DeliveryClient] = None
_default_client_lock = threading.Lock()


def get_delivery_client(config: DeliveryConfig) -> DeliveryClient:
    """
    Return the process-wide client, creating it on first use

    A new client replaces the cached one only when the pool settings changed.
    """
    global _default_client
    with _default_client_lock:
        client = _default_client
        if (client is None
                or client.pool_size != config.max_concurrency
                or client.free_socket_timeout_ms != config.free_socket_timeout_ms):
            if client is not None:
                client.close()
            client = DeliveryClient(config.max_concurrency, config.free_socket_timeout_ms)
            _default_client = client
        return client


def deliver(log_line: LogLine, config: DeliveryConfig, client: Optional[DeliveryClient] = None) -> str:
    """Ship one log line, using the shared client unless one is given"""
    if client is None:
        # Check before touching the pool so a missing key never opens a socket
        if not config.key:
            raise MissingCredentialError('Missing LogDNA Ingestion Key')
        client = get_delivery_client(config)
    return client.deliver(log_line, config)
