"""OneDrive client – creates album folders and uploads photos through Graph upload sessions."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable, Iterator
from typing import BinaryIO, TypeVar
from urllib.parse import quote

import requests
from pydantic import BaseModel, ValidationError

from photo_import.auth import TokenProvider
from photo_import.chunking import CHUNK_SIZE, split_chunks, stream_length
from photo_import.errors import (
    AuthExpiredError,
    ContentSourceError,
    ProtocolViolationError,
    RemoteRejectionError,
)
from photo_import.models import (
    Chunk,
    DriveItem,
    FolderCreated,
    PhotoModel,
    UploadSessionCreated,
)

logger = logging.getLogger(__name__)

GRAPH_BASE = "https://graph.microsoft.com"
UPLOAD_PARAMS = "?@microsoft.graph.conflictBehavior=rename"
DEFAULT_FOLDER = "Pictures"

_Schema = TypeVar("_Schema", bound=BaseModel)


class GraphPhotosClient:
    """Issues the Graph requests needed to import albums and photos into OneDrive.

    Every request carries a bearer token from *token_provider*. A 401 refreshes
    the token once and replays the request once; nothing else is retried.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = GRAPH_BASE,
        session: requests.Session | None = None,
        chunk_size: int = CHUNK_SIZE,
        timeout: float = 120,
    ):
        self._tokens = token_provider
        self._base = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._chunk_size = chunk_size
        self._timeout = timeout
        self.create_folder_url = f"{self._base}/v1.0/me/drive/special/photos/children"

    # ── requests ────────────────────────────────────────────────────

    def _request(
        self,
        method: str,
        url: str,
        token: str,
        headers: dict | None = None,
        **kwargs,
    ) -> requests.Response:
        all_headers = {"Authorization": f"Bearer {token}", **(headers or {})}
        return self._session.request(
            method, url, headers=all_headers, timeout=self._timeout, **kwargs
        )

    def _send(self, method: str, url: str, headers: dict | None = None, **kwargs) -> requests.Response:
        """Return a 2xx response for *method* *url*; the caller closes it."""
        token = self._tokens.current_token()
        resp = self._request(method, url, token, headers, **kwargs)
        if resp.status_code == 401:
            resp.close()
            logger.info("Unauthorized response from %s %s, refreshing token", method, url)
            token = self._tokens.refresh(token)
            resp = self._request(method, url, token, headers, **kwargs)
            if resp.status_code == 401:
                raise self._rejection(resp, url, AuthExpiredError)
        if not 200 <= resp.status_code <= 299:
            raise self._rejection(resp, url)
        return resp

    @staticmethod
    def _rejection(
        resp: requests.Response,
        url: str,
        error_cls: type[RemoteRejectionError] = RemoteRejectionError,
    ) -> RemoteRejectionError:
        with resp:
            body = resp.text
        return error_cls(resp.status_code, resp.reason or "", body, url)

    @staticmethod
    def _decode(resp: requests.Response, schema: type[_Schema], what: str) -> _Schema:
        with resp:
            try:
                payload = resp.json()
            except ValueError as exc:
                raise ProtocolViolationError(f"Got malformed body while expecting {what}: {resp.text!r}") from exc
        try:
            return schema.model_validate(payload)
        except ValidationError as exc:
            raise ProtocolViolationError(f"Expected {what} to be present in {payload}") from exc

    # ── folder creation ─────────────────────────────────────────────

    def create_folder(self, name: str) -> str:
        """Create a folder under the Photos special folder and return its id."""
        body = {
            "name": name,
            "folder": {},
            "@microsoft.graph.conflictBehavior": "rename",
        }
        resp = self._send("POST", self.create_folder_url, json=body)
        folder = self._decode(resp, FolderCreated, "folder id")
        logger.info("Created OneDrive folder %r (id=%s)", name, folder.id)
        return folder.id

    # ── upload ──────────────────────────────────────────────────────

    def photo_upload_url(self, photo: PhotoModel, folder_id: str | None = None) -> str:
        """Return the item content URL *photo* is uploaded to."""
        title = quote(photo.title, safe="")
        if folder_id:
            return f"{self._base}/v1.0/me/drive/items/{quote(folder_id, safe='')}:/{title}:/content{UPLOAD_PARAMS}"
        return f"{self._base}/v1.0/me/drive/root:/{DEFAULT_FOLDER}/{title}:/content{UPLOAD_PARAMS}"

    def create_upload_session(self, url: str, name: str) -> UploadSessionCreated:
        resp = self._send("POST", url, json={"item": {"name": name}})
        return self._decode(resp, UploadSessionCreated, "uploadUrl")

    def upload_photo(
        self,
        photo: PhotoModel,
        stream: BinaryIO,
        folder_id: str | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> DriveItem:
        """Upload *stream* as *photo* into *folder_id* (or the default folder).

        *stream* is always closed before returning.
        """
        url = self.photo_upload_url(photo, folder_id)
        total = photo.size if photo.size is not None else stream_length(stream)
        chunks = split_chunks(stream, self._chunk_size)
        try:
            if total is None:
                # Content-Range needs the total up front, so unsized streams are buffered.
                buffered = list(chunks)
                total = sum(chunk.size for chunk in buffered)
                pending: Iterator[Chunk] = iter(buffered)
            else:
                pending = chunks

            first = next(pending, None)
            if first is None:
                if total:
                    raise ContentSourceError(f"{photo.title} is empty but declared {total} bytes")
                return self._simple_upload(url, photo)

            session = self.create_upload_session(url, photo.title)
            return self._upload_chunks(
                session.upload_url,
                itertools.chain([first], pending),
                total,
                photo,
                progress_callback,
            )
        finally:
            chunks.close()

    def _simple_upload(self, url: str, photo: PhotoModel) -> DriveItem:
        """Single-request upload; used for empty content, which a session cannot carry."""
        resp = self._send(
            "PUT", url, data=b"", headers={"Content-Type": photo.media_type}
        )
        item = self._decode(resp, DriveItem, "item id")
        logger.info("Uploaded empty %s (id=%s)", photo.title, item.id)
        return item

    def _upload_chunks(
        self,
        upload_url: str,
        chunks: Iterator[Chunk],
        total: int,
        photo: PhotoModel,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> DriveItem:
        """PUT each chunk to the session in offset order and return the created item."""
        sent = 0
        item = None
        for chunk in chunks:
            # The final PUT creates the item, so trailing bytes must be caught before it.
            if chunk.end >= total or (chunk.end + 1 == total and next(chunks, None) is not None):
                raise ContentSourceError(
                    f"{photo.title} has more than the declared {total} bytes"
                )
            headers = {
                "Content-Length": str(chunk.size),
                "Content-Range": chunk.content_range(total),
                "Content-Type": photo.media_type,
            }
            logger.debug("Uploading %s %s", photo.title, headers["Content-Range"])
            resp = self._send("PUT", upload_url, headers=headers, data=chunk.data)
            sent = chunk.end + 1
            if progress_callback:
                progress_callback(sent, total)
            if sent < total:
                resp.close()
                continue
            if resp.status_code not in (200, 201):
                resp.close()
                raise ProtocolViolationError(
                    f"Got bad response code when finishing upload session: {resp.status_code}"
                )
            item = self._decode(resp, DriveItem, "item id")
            break

        if item is None:
            raise ContentSourceError(
                f"{photo.title} ended after {sent} of the declared {total} bytes"
            )
        logger.info("Uploaded %s (%d bytes, id=%s)", photo.title, total, item.id)
        return item
