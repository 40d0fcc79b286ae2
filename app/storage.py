import logging
import os
from pathlib import Path
from typing import List, Optional, Union

from azure.core.exceptions import ResourceNotFoundError
from azure.storage.blob import BlobServiceClient, ContentSettings

logger = logging.getLogger(__name__)


class StorageService:
    def __init__(self, local_storage_path: Optional[str] = None):
        # Allow switching between Local and Azure via env var
        self.connection_string = os.getenv("AZURE_STORAGE_CONNECTION_STRING")
        self.container_name = os.getenv("CONTAINER_NAME", "file-container")
        self.public_base_url = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
        self.local_storage_path = Path(local_storage_path or os.getenv("LOCAL_STORAGE_PATH", "local_storage"))

        if self.connection_string:
            logger.info("Initializing Azure Blob Storage...")
            self.blob_service_client = BlobServiceClient.from_connection_string(self.connection_string)
            self.container_client = self.blob_service_client.get_container_client(self.container_name)
            if not self.container_client.exists():
                self.container_client.create_container()
            self.mode = "AZURE"
        else:
            logger.info("No connection string found. Using LOCAL storage mode.")
            self.mode = "LOCAL"
            self.local_storage_path.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def normalize_key(filename: str) -> str:
        return filename.replace("\\", "/").lstrip("/")

    def public_url(self, filename: str) -> str:
        filename = self.normalize_key(filename)
        if self.mode == "AZURE":
            return self.container_client.get_blob_client(filename).url
        return f"{self.public_base_url}/files/{filename}"

    def upload_file(self, filename: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Store `data` under `filename` and return its public URL."""
        filename = self.normalize_key(filename)
        if self.mode == "AZURE":
            blob_client = self.container_client.get_blob_client(filename)
            blob_client.upload_blob(
                data,
                overwrite=True,
                content_settings=ContentSettings(content_type=content_type),
            )
        else:
            file_path = self.local_storage_path / filename
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, "wb") as f:
                f.write(data)
        logger.info(f"Stored {filename} ({len(data)} bytes, {content_type})")
        return self.public_url(filename)

    def get_file(self, filename: str) -> Union[bytes, None]:
        filename = self.normalize_key(filename)
        if self.mode == "AZURE":
            blob_client = self.container_client.get_blob_client(filename)
            try:
                download_stream = blob_client.download_blob()
                return download_stream.readall()
            except ResourceNotFoundError:
                return None
        else:
            file_path = self.local_storage_path / filename
            if file_path.exists():
                with open(file_path, "rb") as f:
                    return f.read()
            return None

    def list_files(self, prefix: str = "") -> List[str]:
        if self.mode == "AZURE":
            return [b.name for b in self.container_client.list_blobs(name_starts_with=prefix or None)]
        files = []
        for p in self.local_storage_path.rglob("*"):
            if p.is_file():
                # Return relative path with forward slashes
                rel_path = str(p.relative_to(self.local_storage_path)).replace("\\", "/")
                if rel_path.startswith(prefix):
                    files.append(rel_path)
        return files

    def delete_file(self, filename: str):
        filename = self.normalize_key(filename)
        if self.mode == "AZURE":
            blob_client = self.container_client.get_blob_client(filename)
            try:
                blob_client.delete_blob()
            except ResourceNotFoundError:
                pass  # Already deleted or not found
        else:
            file_path = self.local_storage_path / filename
            if file_path.exists():
                file_path.unlink()
