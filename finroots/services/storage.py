import json
import logging
import os
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import ClientError

from ..models.schemas import CrmSnapshot
from ..settings import Settings, get_settings
from ..utils.cleanup import cleanup_file, safe_filename

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "data/snapshot.json"


class StorageService:
    """Snapshot and audio storage on S3 when configured, local disk otherwise."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.base_dir = self.settings.upload_dir
        if self.settings.bucket_name and self.settings.s3_access_key and self.settings.s3_secret_key:
            self.use_s3 = True
            self.bucket_name = self.settings.bucket_name
            self.s3_client = boto3.client(
                's3',
                region_name=self.settings.s3_region,
                aws_access_key_id=self.settings.s3_access_key,
                aws_secret_access_key=self.settings.s3_secret_key
            )
        else:
            self.use_s3 = False

    def _s3_upload_json(self, key: str, data: dict):
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=json.dumps(data, indent=2),
                ContentType='application/json'
            )
        except ClientError as e:
            logger.error(f"S3 Upload Error: {e}")
            raise e

    def _s3_download_json(self, key: str) -> Optional[dict]:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            content = response['Body'].read().decode('utf-8')
            return json.loads(content)
        except ClientError as e:
            if e.response['Error']['Code'] == "NoSuchKey":
                return None
            logger.error(f"S3 Download Error: {e}")
            raise e

    # --- CRM snapshot ---

    def load_snapshot(self) -> CrmSnapshot:
        if self.use_s3:
            data = self._s3_download_json(SNAPSHOT_KEY)
            if data is None:
                logger.warning(f"No snapshot at s3://{self.bucket_name}/{SNAPSHOT_KEY}; starting empty")
                return CrmSnapshot()
            return CrmSnapshot.model_validate(data)

        path = Path(self.settings.data_file)
        if not path.exists():
            logger.warning(f"No snapshot at {path}; starting empty")
            return CrmSnapshot()
        with open(path, "r", encoding="utf-8") as f:
            return CrmSnapshot.model_validate_json(f.read())

    def save_snapshot(self, snapshot: CrmSnapshot):
        if self.use_s3:
            self._s3_upload_json(SNAPSHOT_KEY, snapshot.model_dump(mode='json'))
            logger.info(f"Saved snapshot to S3: {SNAPSHOT_KEY}")
            return
        path = Path(self.settings.data_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(snapshot.model_dump_json(indent=2))
        logger.info(f"Saved snapshot to {path}")

    # --- Voice note audio ---

    def audio_key(self, owner_kind: str, owner_id: str, note_id: str, filename: str) -> str:
        return f"{self.base_dir}/{owner_kind}/{owner_id}/{note_id}_{safe_filename(filename)}"

    def save_audio(self, content: bytes, owner_kind: str, owner_id: str, note_id: str, filename: str) -> str:
        """Store an uploaded recording and return where it lives (a path or an s3:// URI)."""
        key = self.audio_key(owner_kind, owner_id, note_id, filename)
        os.makedirs(os.path.dirname(key), exist_ok=True)
        with open(key, "wb") as f:
            f.write(content)
        if not self.use_s3:
            return key
        try:
            self.s3_client.upload_file(key, self.bucket_name, key)
            logger.info(f"Uploaded {key} to s3://{self.bucket_name}/{key}")
        finally:
            cleanup_file(key)
        return f"s3://{self.bucket_name}/{key}"

    def fetch_audio(self, location: str, workdir: Path) -> str:
        """Local path for a stored recording, downloading into workdir when it lives on S3."""
        if not location.startswith("s3://"):
            return location
        bucket = location.split("/")[2]
        key = "/".join(location.split("/")[3:])
        local_path = str(workdir / Path(key).name)
        self.s3_client.download_file(bucket, key, local_path)
        return local_path
