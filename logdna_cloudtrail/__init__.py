"""
Forward CloudTrail batches from S3 to LogDNA ingestion
"""

__version__ = '1.0.0'
