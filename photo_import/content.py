"""Locating the bytes of a photo: staged per-job files or a directly fetchable URL."""

from __future__ import annotations

import io
import logging
import shutil
from pathlib import Path
from typing import BinaryIO, Protocol

import requests

from photo_import.errors import ContentSourceError
from photo_import.models import PhotoModel

logger = logging.getLogger(__name__)


class TemporaryJobStore(Protocol):
    def get_stream(self, job_id: str, key: str) -> BinaryIO: ...


class LocalJobStore:
    """Keeps staged content under ``root/<job_id>/<key>``."""

    def __init__(self, root: str | Path = ".import_temp"):
        self.root = Path(root)

    def _path(self, job_id: str, key: str) -> Path:
        job_dir = (self.root / str(job_id)).resolve()
        path = (job_dir / key).resolve()
        if job_dir not in path.parents:
            raise ContentSourceError(f"Staged key {key!r} escapes the job directory")
        return path

    def create(self, job_id: str, key: str, stream: BinaryIO) -> Path:
        """Copy *stream* into the store and close it."""
        path = self._path(job_id, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with stream, open(path, "wb") as f:
            shutil.copyfileobj(stream, f)
        logger.debug("Staged %s for job %s", key, job_id)
        return path

    def get_stream(self, job_id: str, key: str) -> BinaryIO:
        path = self._path(job_id, key)
        try:
            return open(path, "rb")
        except FileNotFoundError as exc:
            raise ContentSourceError(f"No staged content for {key!r} in job {job_id}") from exc

    def remove_job(self, job_id: str) -> None:
        shutil.rmtree(self.root / str(job_id), ignore_errors=True)


class ContentResolver:
    """Opens a readable stream for a photo's content."""

    def __init__(
        self,
        job_store: TemporaryJobStore | None = None,
        session: requests.Session | None = None,
        timeout: float = 120,
    ):
        self._job_store = job_store
        self._session = session or requests.Session()
        self._timeout = timeout

    def open(self, job_id: str, photo: PhotoModel) -> BinaryIO:
        if photo.in_temp_store:
            if self._job_store is None or not photo.fetchable_url:
                raise ContentSourceError(f"Don't know how to get the stream for {photo.title}")
            return self._job_store.get_stream(job_id, photo.fetchable_url)
        if photo.fetchable_url:
            return self._fetch(photo.fetchable_url)
        raise ContentSourceError(f"Don't know how to get the stream for {photo.title}")

    def _fetch(self, url: str) -> BinaryIO:
        logger.debug("Fetching %s", url)
        resp = self._session.get(url, stream=True, timeout=self._timeout)
        if not resp.ok:
            status = resp.status_code
            resp.close()
            raise ContentSourceError(f"Fetching {url} failed with status {status}")
        return ResponseStream(resp)


class ResponseStream(io.RawIOBase):
    """Read-only file object over a streamed response body.

    Bytes come from ``iter_content``, so a dropped or truncated download
    raises a ``requests`` exception rather than a urllib3 one.
    """

    def __init__(self, resp: requests.Response, block_size: int = 64 * 1024):
        self._resp = resp
        self._blocks = resp.iter_content(chunk_size=block_size)
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        while not self._pending:
            block = next(self._blocks, None)
            if block is None:
                return 0
            self._pending = block
        n = min(len(b), len(self._pending))
        b[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n

    def close(self) -> None:
        if not self.closed:
            self._resp.close()
        super().close()
