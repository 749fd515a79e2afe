#!/usr/bin/env python3
"""
CloudTrail to LogDNA forwarder
Supports Lambda runtime (S3 event trigger), manual input and local file modes
"""

import argparse
import gzip
import json
import sys
import urllib.parse
import zlib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from logdna_cloudtrail.config import DEFAULT_APP, DEFAULT_LEVEL, DeliveryConfig, get_config
from logdna_cloudtrail.delivery import DeliveryClient, LogLine, deliver
from logdna_cloudtrail.exceptions import (
    DecodeError,
    FetchError,
    InvalidS3NotificationError,
    NonRecoverableError,
)
from logdna_cloudtrail.logger import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


@dataclass(frozen=True)
class BatchReference:
    """Location of one CloudTrail batch in S3"""
    bucket: str
    key: str

    def __str__(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


@dataclass
class DeliveryResult:
    """Outcome of shipping one log line"""
    index: int
    log_line: LogLine
    body: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        result = {'index': self.index, 'ok': self.ok}
        if self.ok:
            result['body'] = self.body
        else:
            result['error'] = str(self.error)
            result['error_type'] = type(self.error).__name__
            result['code'] = getattr(self.error, 'code', None)
        return result


@dataclass
class BatchResult:
    """Aggregated per-line outcomes for one batch"""
    reference: Optional[BatchReference]
    results: List[DeliveryResult] = field(default_factory=list)

    @property
    def successful_deliveries(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failed_deliveries(self) -> int:
        return len(self.results) - self.successful_deliveries

    @property
    def first_error(self) -> Optional[Exception]:
        """Representative error: the first failed line in batch order"""
        for result in self.results:
            if not result.ok:
                return result.error
        return None

    def to_dict(self) -> Dict[str, Any]:
        first_error = self.first_error
        return {
            'source': str(self.reference) if self.reference else None,
            'successful_deliveries': self.successful_deliveries,
            'failed_deliveries': self.failed_deliveries,
            'error': str(first_error) if first_error else None,
            'results': [result.to_dict() for result in self.results],
        }


def extract_batch_reference(event: Mapping[str, Any]) -> BatchReference:
    """
    Extract the batch location from an S3 event notification

    Only the first notification record is consulted. S3 can group several
    object-created records into one notification; the rest are reported and
    left unprocessed.
    """
    try:
        records = event['Records']
        s3_record = records[0]
        bucket_name = s3_record['s3']['bucket']['name']
        object_key = urllib.parse.unquote_plus(s3_record['s3']['object']['key'])
    except (KeyError, IndexError, TypeError) as e:
        raise InvalidS3NotificationError(f"Invalid S3 event format: missing {str(e)}")

    if len(records) > 1:
        logger.warning(f"Notification contains {len(records)} records, only the first is processed")

    reference = BatchReference(bucket=bucket_name, key=object_key)
    logger.info(f"Processing S3 object: {reference}")
    return reference


def fetch_batch(reference: BatchReference, s3_client=None, region: str = 'us-east-1') -> bytes:
    """
    Download the raw (still compressed) batch from S3

    Raises:
        FetchError: S3 refused or failed the read
    """
    if s3_client is None:
        s3_client = boto3.client('s3', region_name=region)

    try:
        response = s3_client.get_object(Bucket=reference.bucket, Key=reference.key)
        file_content = response['Body'].read()
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Failed to download {reference}: {str(e)}")
        raise FetchError(f"Failed to download {reference}: {str(e)}") from e

    logger.info(f"Downloaded file size: {len(file_content)} bytes (compressed)")
    return file_content


def _reject_constant(name: str) -> Any:
    # json.loads accepts NaN and Infinity, which strict JSON does not
    raise ValueError(f"Invalid JSON constant {name}")


def decode_batch(raw: bytes) -> List[Any]:
    """
    Decompress a gzipped CloudTrail document and return its Records array

    Decoding is all-or-nothing: any failure raises DecodeError and no
    records are returned.
    """
    try:
        content = gzip.decompress(raw)
    except (OSError, EOFError, zlib.error) as e:
        raise DecodeError(f"Batch is not valid gzip data: {str(e)}") from e

    logger.info(f"Decompressed file size: {len(content)} bytes")

    try:
        document = json.loads(content.decode('utf-8'), parse_constant=_reject_constant)
    except ValueError as e:
        raise DecodeError(f"Batch is not valid JSON: {str(e)}") from e

    if not isinstance(document, dict) or 'Records' not in document:
        raise DecodeError("Batch document has no top-level 'Records' field")

    records = document['Records']
    if not isinstance(records, list):
        raise DecodeError(f"'Records' must be a list, got {type(records).__name__}")

    logger.info(f"Decoded {len(records)} records from batch")
    return records


def normalize_record(record: Any, config: DeliveryConfig) -> LogLine:
    """
    Turn one raw CloudTrail record into a LogLine

    The whole record becomes the line. Never raises, whatever the record
    looks like.
    """
    timestamp = None
    if isinstance(record, Mapping):
        timestamp = record.get('timestamp') or record.get('eventTime')
        line = dict(record)
    else:
        line = record

    return LogLine(
        timestamp=timestamp,
        line=line,
        level=config.level or DEFAULT_LEVEL,
        app=config.app or DEFAULT_APP
    )


def prepare_logs(records: List[Any], config: DeliveryConfig) -> List[LogLine]:
    """
    Normalize every record of a batch, keeping batch order

    config.log_raw_event is the hook for merging event metadata into the
    line; records are currently shipped as-is in both modes.
    """
    logger.info(f"Preparing {len(records)} log lines (log_raw_event={config.log_raw_event})")
    return [normalize_record(record, config) for record in records]


def _deliver_one(index: int, log_line: LogLine, config: DeliveryConfig,
                 client: Optional[DeliveryClient]) -> DeliveryResult:
    try:
        body = deliver(log_line, config, client=client)
        return DeliveryResult(index=index, log_line=log_line, body=body)
    except Exception as e:
        logger.error(f"Failed to deliver line {index}: {str(e)}")
        return DeliveryResult(index=index, log_line=log_line, error=e)


def deliver_all(log_lines: List[LogLine], config: DeliveryConfig,
                client: Optional[DeliveryClient] = None) -> List[DeliveryResult]:
    """
    Deliver every line concurrently, at most config.max_concurrency at a time

    Every line gets exactly one DeliveryResult, in batch order. A failing
    line never stops the others.
    """
    if not log_lines:
        return []

    workers = min(config.max_concurrency, len(log_lines))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='logdna-delivery') as executor:
        futures = [
            executor.submit(_deliver_one, index, log_line, config, client)
            for index, log_line in enumerate(log_lines)
        ]
        return [future.result() for future in futures]


def dispatch(event: Mapping[str, Any], config: DeliveryConfig, s3_client=None,
             client: Optional[DeliveryClient] = None) -> BatchResult:
    """
    Run fetch, decode, normalize and delivery for one S3 notification

    Fetch and decode failures abort the whole batch; delivery failures are
    recorded per line.
    """
    reference = extract_batch_reference(event)
    raw = fetch_batch(reference, s3_client=s3_client, region=config.aws_region)
    records = decode_batch(raw)
    log_lines = prepare_logs(records, config)
    results = deliver_all(log_lines, config, client=client)

    batch_result = BatchResult(reference=reference, results=results)
    logger.info(f"Delivered {reference}: Success: {batch_result.successful_deliveries}, Failed: {batch_result.failed_deliveries}")
    return batch_result


def push_metrics(app: str, metrics_data: Dict[str, int], config: DeliveryConfig):
    """
    Push delivery counts to CloudWatch under the configured namespace
    """
    post_data = []
    for metric_name, count in metrics_data.items():
        post_data.append({
            'MetricName': f'LogCount/{metric_name}',
            'Dimensions': [
                {
                    'Name': 'App',
                    'Value': app
                },
            ],
            'Value': count,
            'Unit': 'Count'
        })

    cloudwatch_client = boto3.client('cloudwatch', region_name=config.aws_region)
    return cloudwatch_client.put_metric_data(
        Namespace=config.metrics_namespace,
        MetricData=post_data
    )


def report_metrics(batch_result: BatchResult, config: DeliveryConfig) -> None:
    if not config.metrics_namespace:
        return
    try:
        push_metrics(
            config.app or DEFAULT_APP,
            {
                'successful_deliveries': batch_result.successful_deliveries,
                'failed_deliveries': batch_result.failed_deliveries,
            },
            config
        )
    except Exception as e:
        logger.error(f"Failed to write delivery metrics to CloudWatch: {str(e)}")


def lambda_handler(event: Dict[str, Any], context) -> Dict[str, Any]:
    """
    AWS Lambda handler for S3 object-created notifications

    Non-recoverable errors are reported in the returned summary so the
    invocation is not retried. Fetch errors and anything unexpected are
    re-raised to let Lambda retry the invocation.
    """
    config = get_config()

    try:
        batch_result = dispatch(event, config)
    except NonRecoverableError as e:
        logger.warning(f"Non-recoverable error processing notification: {str(e)}. Batch will not be retried.")
        return {
            'source': None,
            'successful_deliveries': 0,
            'failed_deliveries': 0,
            'error': str(e),
            'results': [],
        }
    except Exception as e:
        logger.error(f"Recoverable error processing notification: {str(e)}. Invocation will be retried.", exc_info=True)
        raise

    if batch_result.first_error is not None:
        logger.error(f"{batch_result.failed_deliveries} line(s) failed, first error: {str(batch_result.first_error)}")

    report_metrics(batch_result, config)
    return batch_result.to_dict()


def manual_input_mode(config: DeliveryConfig) -> BatchResult:
    """
    Manual input mode for development/testing
    Reads an S3 event notification from stdin and processes it
    """
    logger.info("Manual input mode - reading S3 event notification JSON from stdin")

    input_data = sys.stdin.read().strip()
    if not input_data:
        raise InvalidS3NotificationError("No input data provided")

    try:
        event = json.loads(input_data)
    except json.JSONDecodeError as e:
        raise InvalidS3NotificationError(f"Invalid notification JSON: {str(e)}")

    return dispatch(event, config)


def file_mode(path: str, config: DeliveryConfig) -> BatchResult:
    """
    Local file mode: decode a gzipped batch from disk and deliver it
    """
    logger.info(f"File mode - reading batch from {path}")
    with open(path, 'rb') as f:
        raw = f.read()

    log_lines = prepare_logs(decode_batch(raw), config)
    return BatchResult(reference=None, results=deliver_all(log_lines, config))


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for standalone execution
    """
    parser = argparse.ArgumentParser(description='Forward CloudTrail batches to LogDNA')
    parser.add_argument('--mode', choices=['manual', 'file'], default='manual',
                        help='Execution mode: manual (S3 notification on stdin) or file (local gzipped batch)')
    parser.add_argument('--path', help='Path to a gzipped CloudTrail batch (file mode)')

    args = parser.parse_args(argv)
    if args.mode == 'file' and not args.path:
        parser.error('--path is required in file mode')

    config = get_config()

    try:
        if args.mode == 'manual':
            batch_result = manual_input_mode(config)
        else:
            batch_result = file_mode(args.path, config)
    except Exception as e:
        logger.error(f"Error processing batch: {str(e)}")
        return 1

    print(json.dumps(batch_result.to_dict(), indent=2))
    return 1 if batch_result.failed_deliveries else 0


if __name__ == '__main__':
    sys.exit(main())
