"""HTTP client for the remote transcription service."""

import hashlib
import json
import logging
import math
import uuid
from pathlib import Path
from typing import AsyncIterator, Dict, Optional

import aiohttp

from ..models.events import ResultResponse, UploadDone, UploadProgress, UploadState
from ..models.transcription import Segment

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024
HASH_BLOCK_SIZE = 1024 * 1024


class RemoteApiError(RuntimeError):
    """Raised when the transcription service returns an unexpected response."""


def hash_file(path: Path) -> str:
    """SHA-256 hex digest of a file."""
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for block in iter(lambda: f.read(HASH_BLOCK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


def _error_message(body: str) -> str:
    try:
        payload = json.loads(body)
    except ValueError:
        return body.strip() or "Remote transcription failed"
    if isinstance(payload, dict):
        return str(payload.get("error") or payload.get("message") or "Remote transcription failed")
    return str(payload)


class RemoteApiClient:
    """Uploads audio in chunks and polls for transcription results."""

    def __init__(self, base_url: str, api_key: Optional[str] = None,
                 user_id: Optional[str] = None, chunk_size: int = DEFAULT_CHUNK_SIZE,
                 timeout: float = 60.0):
        """Initialize API client.

        Args:
            base_url: Service root, e.g. ``https://example.com/api``
            api_key: Value sent as ``X-API-Key``
            user_id: Value sent as ``X-User-ID``
            chunk_size: Bytes per uploaded chunk
            timeout: Total timeout in seconds for each request
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.user_id = user_id
        self.chunk_size = chunk_size
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        logger.info(f"RemoteApiClient initialized for {self.base_url} (chunk size {chunk_size} bytes)")

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.user_id:
            headers["X-User-ID"] = self.user_id
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    async def upload_file(self, path: Path) -> AsyncIterator[UploadState]:
        """Upload a file chunk by chunk.

        Args:
            path: Audio file to upload

        Yields:
            UploadProgress after each acknowledged chunk, then UploadDone

        Raises:
            RemoteApiError: If the server rejects a chunk or returns no job id
        """
        path = Path(path)
        file_size = path.stat().st_size
        total_chunks = max(1, math.ceil(file_size / self.chunk_size))
        base_headers = self._headers()
        base_headers.update({
            "Content-Type": "application/octet-stream",
            "X-Original-Filename": path.name,
            "X-Total-Chunks": str(total_chunks),
            "X-Upload-ID": str(uuid.uuid4()),
            "X-Hash": hash_file(path),
        })
        logger.info(f"Uploading {path.name}: {file_size} bytes in {total_chunks} chunks")

        sent = 0
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            with open(path, 'rb') as f:
                for index in range(total_chunks):
                    chunk = f.read(self.chunk_size)
                    headers = dict(base_headers, **{"X-Chunk-Index": str(index)})
                    async with session.post(f"{self.base_url}/upload", data=chunk, headers=headers) as response:
                        if response.status != 200:
                            error_text = await response.text()
                            raise RemoteApiError(f"Upload of chunk {index} failed: {response.status} - {error_text}")
                        last_chunk = index == total_chunks - 1
                        payload = await self._read_json(response) if last_chunk else None

                    sent += len(chunk)
                    logger.debug(f"Uploaded chunk {index + 1}/{total_chunks}")
                    yield UploadProgress(sent / file_size if file_size else 1.0)

        job_id = payload.get("id") if isinstance(payload, dict) else None
        if not job_id:
            raise RemoteApiError(f"Upload response did not contain a job id: {payload}")
        logger.info(f"Upload of {path.name} accepted as job {job_id}")
        yield UploadDone(str(job_id))

    async def get_result(self, job_id: str) -> ResultResponse:
        """Poll the result endpoint once.

        Raises:
            RemoteApiError: On an unexpected status or malformed body
        """
        url = f"{self.base_url}/result/{job_id}"
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(url, headers=self._headers()) as response:
                if response.status == 202:
                    return ResultResponse(is_done=False)
                if response.status == 500:
                    return ResultResponse(is_done=False, error_message=_error_message(await response.text()))
                if response.status != 200:
                    error_text = await response.text()
                    raise RemoteApiError(f"Result request failed: {response.status} - {error_text}")
                payload = await self._read_json(response)

        try:
            segments = [
                Segment(
                    start_time=int(float(item["start"]) * 1000),
                    end_time=int(float(item["end"]) * 1000),
                    text=str(item["text"]).strip(),
                )
                for item in payload.get("segments", [])
            ]
            language = payload.get("language")
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise RemoteApiError(f"Malformed result for job {job_id}: {e}") from e
        return ResultResponse(is_done=True, segments=segments, language=language)

    @staticmethod
    async def _read_json(response: aiohttp.ClientResponse):
        try:
            return await response.json(content_type=None)
        except ValueError as e:
            raise RemoteApiError(f"Invalid JSON from {response.url}: {e}") from e
