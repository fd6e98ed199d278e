"""
Object storage for rendered quote PDFs (MinIO, AWS S3, DigitalOcean Spaces).

Optional: enabled with DOCUMENT_STORAGE_ENABLED. The orchestrator treats an
upload failure as a missing pdf_url, never as a failed send.
"""
import json
import logging
import uuid
from typing import Optional

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class DocumentStorage:
    """
    S3-compatible storage for quote documents.

    Usage:
        storage = DocumentStorage.from_config(app.config)
        url = storage.upload_document('Q-202501-0001', pdf_bytes)
    """

    def __init__(self, client, bucket: str, public_url: str):
        self.client = client
        self.bucket = bucket
        self.public_url = public_url.rstrip('/')
        self._bucket_checked = False

    @classmethod
    def from_config(cls, config) -> 'DocumentStorage':
        client = boto3.client(
            's3',
            endpoint_url=config['S3_ENDPOINT'],
            aws_access_key_id=config['S3_ACCESS_KEY'],
            aws_secret_access_key=config['S3_SECRET_KEY'],
            region_name=config['S3_REGION'],
            config=BotoConfig(signature_version='s3v4')
        )
        return cls(client, config['S3_BUCKET'], config['S3_PUBLIC_URL'])

    def _ensure_bucket_exists(self):
        """Create the bucket with a public-read policy on first use."""
        if self._bucket_checked:
            return
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code')
            if error_code not in ('404', 'NoSuchBucket'):
                logger.error(f"[STORAGE] Failed to check bucket '{self.bucket}': {e}")
                raise
            self.client.create_bucket(Bucket=self.bucket)
            policy = {
                "Version": "2012-10-17",
                "Statement": [{
                    "Effect": "Allow",
                    "Principal": {"AWS": "*"},
                    "Action": "s3:GetObject",
                    "Resource": f"arn:aws:s3:::{self.bucket}/*"
                }]
            }
            self.client.put_bucket_policy(Bucket=self.bucket, Policy=json.dumps(policy))
            logger.info(f"[STORAGE] Bucket '{self.bucket}' created with public-read policy")
        self._bucket_checked = True

    def object_name_for(self, quote_number: str, filename: Optional[str] = None) -> str:
        # Random suffix keeps document URLs unguessable from the quote number
        name = filename or f"quote-{quote_number}.pdf"
        return f"quotes/{uuid.uuid4().hex[:12]}-{name}"

    def upload_document(self, quote_number: str, content: bytes, filename: Optional[str] = None,
                        content_type: str = 'application/pdf') -> str:
        """
        Upload a rendered document and return its public URL.

        Raises:
            ClientError: upload failed.
        """
        self._ensure_bucket_exists()
        object_name = self.object_name_for(quote_number, filename)
        logger.info(f"[STORAGE] Uploading '{object_name}' ({len(content)} bytes) to '{self.bucket}'")
        self.client.put_object(
            Bucket=self.bucket,
            Key=object_name,
            Body=content,
            ContentType=content_type,
            Metadata={'quote-number': quote_number},
        )
        return self.get_public_url(object_name)

    def get_public_url(self, object_name: str) -> str:
        return f"{self.public_url}/{self.bucket}/{object_name}"
