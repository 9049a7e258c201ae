"""
S3 object storage for rendered documents.

Disabled (is_enabled() is False) when AWS_S3_BUCKET is unset; callers then
keep the PDF bytes on the PatientDocument row instead.
"""

import logging

import boto3
from botocore.config import Config
from django.conf import settings

logger = logging.getLogger(__name__)


def is_enabled() -> bool:
    return bool(settings.AWS_S3_BUCKET)


class DocumentStorage:

    def __init__(self):
        timeout = settings.STORAGE_TIMEOUT_SECONDS
        self.s3_client = boto3.client(
            's3',
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
            region_name=settings.AWS_REGION,
            config=Config(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={'max_attempts': 2},
            ),
        )
        self.bucket = settings.AWS_S3_BUCKET

    @staticmethod
    def intake_key(clinic_id, patient_id, submission_id) -> str:
        return f'clinics/{clinic_id}/patients/{patient_id}/intake/{submission_id}.pdf'

    def upload(self, key: str, content: bytes, content_type: str = 'application/pdf') -> str:
        """Upload and return a durable s3:// URL."""
        self.s3_client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=content,
            ContentType=content_type,
            ServerSideEncryption='AES256',
        )
        logger.info('Uploaded %d bytes to s3://%s/%s', len(content), self.bucket, key)
        return f's3://{self.bucket}/{key}'

