"""
Tests for the Graph client: folder creation, upload sessions and the 401 policy.
"""
import io

import pytest

from photo_import.auth import StaticTokenProvider
from photo_import.errors import (
    AuthExpiredError,
    ContentSourceError,
    ProtocolViolationError,
    RemoteRejectionError,
)
from photo_import.graph_client import GraphPhotosClient
from photo_import.models import PhotoModel

from conftest import FakeResponse, FakeSession

UPLOAD_URL = "https://upload.test/session-1"


def _photo(**overrides):
    data = {"dataId": "P1", "title": "beach.jpg", "mediaType": "image/jpeg", "albumId": "A1"}
    data.update(overrides)
    return PhotoModel.model_validate(data)


class TestCreateFolder:
    def test_posts_folder_descriptor(self, client, session):
        session.queue(FakeResponse(201, {"id": "folder-1", "name": "Vacation"}))

        assert client.create_folder("Vacation") == "folder-1"

        call = session.calls[0]
        assert call.method == "POST"
        assert call.url == "https://graph.test/v1.0/me/drive/special/photos/children"
        assert call.json == {
            "name": "Vacation",
            "folder": {},
            "@microsoft.graph.conflictBehavior": "rename",
        }
        assert call.headers["Authorization"] == "Bearer token-1"

    def test_refreshes_once_on_401(self, client, session):
        first = FakeResponse(401, {"error": "expired"}, reason="Unauthorized")
        session.queue(first, FakeResponse(201, {"id": "folder-123"}))

        assert client.create_folder("Vacation") == "folder-123"

        assert len(session.calls) == 2
        assert session.calls[0].headers["Authorization"] == "Bearer token-1"
        assert session.calls[1].headers["Authorization"] == "Bearer token-2"
        assert session.calls[1].json == session.calls[0].json
        assert first.closed

    def test_second_401_is_fatal(self, client, session):
        session.queue(
            FakeResponse(401, text="expired", reason="Unauthorized"),
            FakeResponse(401, text="still expired", reason="Unauthorized"),
        )

        with pytest.raises(AuthExpiredError) as exc_info:
            client.create_folder("Vacation")

        assert exc_info.value.status_code == 401
        assert "still expired" in str(exc_info.value)
        assert len(session.calls) == 2

    def test_other_errors_are_not_retried(self, client, session):
        session.queue(FakeResponse(500, text='{"error": "boom"}', reason="Internal Server Error"))

        with pytest.raises(RemoteRejectionError) as exc_info:
            client.create_folder("Vacation")

        err = exc_info.value
        assert err.status_code == 500
        assert err.body == '{"error": "boom"}'
        assert "500" in str(err)
        assert "Internal Server Error" in str(err)
        assert '{"error": "boom"}' in str(err)
        assert len(session.calls) == 1

    def test_retry_failure_reports_retried_response(self, client, session):
        session.queue(
            FakeResponse(401, text="expired", reason="Unauthorized"),
            FakeResponse(403, text="forbidden body", reason="Forbidden"),
        )

        with pytest.raises(RemoteRejectionError) as exc_info:
            client.create_folder("Vacation")

        assert exc_info.value.status_code == 403
        assert exc_info.value.body == "forbidden body"

    @pytest.mark.parametrize("body", [{"id": ""}, {"name": "Vacation"}, {"id": None}])
    def test_missing_id_is_protocol_violation(self, client, session, body):
        session.queue(FakeResponse(201, body))

        with pytest.raises(ProtocolViolationError):
            client.create_folder("Vacation")

    def test_malformed_body_is_protocol_violation(self, client, session):
        session.queue(FakeResponse(201, text="<html>not json</html>"))

        with pytest.raises(ProtocolViolationError):
            client.create_folder("Vacation")


class TestUploadUrl:
    def test_url_under_folder(self, client):
        url = client.photo_upload_url(_photo(), "folder-1")
        assert url == (
            "https://graph.test/v1.0/me/drive/items/folder-1:/beach.jpg:/content"
            "?@microsoft.graph.conflictBehavior=rename"
        )

    def test_url_without_folder_uses_pictures(self, client):
        url = client.photo_upload_url(_photo(albumId=None, title="sunset.jpg"))
        assert url == (
            "https://graph.test/v1.0/me/drive/root:/Pictures/sunset.jpg:/content"
            "?@microsoft.graph.conflictBehavior=rename"
        )

    def test_title_is_percent_encoded(self, client):
        url = client.photo_upload_url(_photo(title="my trip/day 1#.jpg"), "folder-1")
        assert ":/my%20trip%2Fday%201%23.jpg:/content" in url


class TestUploadPhoto:
    def _client(self, session, chunk_size=4, tokens=None):
        tokens = tokens or StaticTokenProvider("token-1", refresher=lambda: "token-2")
        return GraphPhotosClient(tokens, base_url="https://graph.test", session=session, chunk_size=chunk_size)

    def test_uploads_chunks_in_order(self):
        session = FakeSession([
            FakeResponse(200, {"uploadUrl": UPLOAD_URL}),
            FakeResponse(202, {"nextExpectedRanges": ["4-"]}),
            FakeResponse(202, {"nextExpectedRanges": ["8-"]}),
            FakeResponse(201, {"id": "item-1", "name": "beach.jpg", "size": 10}),
        ])
        client = self._client(session)
        stream = io.BytesIO(b"0123456789")

        item = client.upload_photo(_photo(), stream, "folder-1")

        assert item.id == "item-1"
        assert stream.closed
        create, *puts = session.calls
        assert create.method == "POST"
        assert create.url.endswith("/items/folder-1:/beach.jpg:/content?@microsoft.graph.conflictBehavior=rename")
        assert create.json == {"item": {"name": "beach.jpg"}}
        assert [p.method for p in puts] == ["PUT", "PUT", "PUT"]
        assert all(p.url == UPLOAD_URL for p in puts)
        assert [p.headers["Content-Range"] for p in puts] == [
            "bytes 0-3/10", "bytes 4-7/10", "bytes 8-9/10",
        ]
        assert [p.headers["Content-Length"] for p in puts] == ["4", "4", "2"]
        assert [p.data for p in puts] == [b"0123", b"4567", b"89"]
        assert all(p.headers["Content-Type"] == "image/jpeg" for p in puts)
        assert all(p.headers["Authorization"] == "Bearer token-1" for p in puts)

    def test_reports_progress(self):
        session = FakeSession([
            FakeResponse(200, {"uploadUrl": UPLOAD_URL}),
            FakeResponse(202, {}),
            FakeResponse(200, {"id": "item-1"}),
        ])
        progress = []

        self._client(session).upload_photo(
            _photo(), io.BytesIO(b"abcdef"), progress_callback=lambda sent, total: progress.append((sent, total))
        )

        assert progress == [(4, 6), (6, 6)]

    def test_unseekable_stream_is_buffered_for_total(self):
        class Unseekable(io.BytesIO):
            def seekable(self):
                return False

        session = FakeSession([
            FakeResponse(200, {"uploadUrl": UPLOAD_URL}),
            FakeResponse(202, {}),
            FakeResponse(201, {"id": "item-1"}),
        ])

        self._client(session).upload_photo(_photo(), Unseekable(b"abcdef"))

        assert [c.headers["Content-Range"] for c in session.calls[1:]] == ["bytes 0-3/6", "bytes 4-5/6"]

    def test_declared_size_is_used_as_total(self):
        session = FakeSession([
            FakeResponse(200, {"uploadUrl": UPLOAD_URL}),
            FakeResponse(201, {"id": "item-1"}),
        ])

        self._client(session).upload_photo(_photo(size=3), io.BytesIO(b"abc"))

        assert session.calls[1].headers["Content-Range"] == "bytes 0-2/3"

    def test_stream_longer_than_declared_size_fails(self):
        session = FakeSession([
            FakeResponse(200, {"uploadUrl": UPLOAD_URL}),
            FakeResponse(202, {}),
        ])

        with pytest.raises(ContentSourceError):
            self._client(session).upload_photo(_photo(size=5), io.BytesIO(b"0123456789"))

    @pytest.mark.parametrize("size,data,puts", [
        (4, b"01234567", 0),
        (8, b"0123456789ab", 1),
    ])
    def test_trailing_bytes_detected_before_final_chunk(self, size, data, puts):
        session = FakeSession([
            FakeResponse(200, {"uploadUrl": UPLOAD_URL}),
            FakeResponse(202, {}),
        ])
        stream = io.BytesIO(data)

        with pytest.raises(ContentSourceError):
            self._client(session).upload_photo(_photo(size=size), stream)

        # the chunk that would complete the item is never sent
        assert [c.method for c in session.calls] == ["POST"] + ["PUT"] * puts
        assert stream.closed

    def test_stream_shorter_than_declared_size_fails(self):
        session = FakeSession([
            FakeResponse(200, {"uploadUrl": UPLOAD_URL}),
            FakeResponse(202, {}),
        ])

        with pytest.raises(ContentSourceError):
            self._client(session).upload_photo(_photo(size=20), io.BytesIO(b"0123"))

    def test_401_on_chunk_refreshes_and_resends_same_chunk(self):
        session = FakeSession([
            FakeResponse(200, {"uploadUrl": UPLOAD_URL}),
            FakeResponse(202, {}),
            FakeResponse(401, text="expired", reason="Unauthorized"),
            FakeResponse(201, {"id": "item-1"}),
        ])

        item = self._client(session).upload_photo(_photo(), io.BytesIO(b"abcdef"))

        assert item.id == "item-1"
        retried, resent = session.calls[2], session.calls[3]
        assert retried.headers["Content-Range"] == resent.headers["Content-Range"] == "bytes 4-5/6"
        assert resent.data == b"ef"
        assert resent.headers["Authorization"] == "Bearer token-2"

    def test_401_on_session_creation_refreshes(self):
        session = FakeSession([
            FakeResponse(401, text="expired", reason="Unauthorized"),
            FakeResponse(200, {"uploadUrl": UPLOAD_URL}),
            FakeResponse(201, {"id": "item-1"}),
        ])

        item = self._client(session).upload_photo(_photo(), io.BytesIO(b"ab"))

        assert item.id == "item-1"
        assert session.calls[1].headers["Authorization"] == "Bearer token-2"

    def test_second_401_on_session_creation_is_fatal(self):
        session = FakeSession([
            FakeResponse(401, text="expired", reason="Unauthorized"),
            FakeResponse(401, text="still expired", reason="Unauthorized"),
        ])

        with pytest.raises(AuthExpiredError) as exc_info:
            self._client(session).upload_photo(_photo(), io.BytesIO(b"ab"))

        assert "still expired" in str(exc_info.value)
        assert len(session.calls) == 2

    def test_401_then_rejection_on_session_creation(self):
        session = FakeSession([
            FakeResponse(401, text="expired", reason="Unauthorized"),
            FakeResponse(409, text="conflict body", reason="Conflict"),
        ])

        with pytest.raises(RemoteRejectionError) as exc_info:
            self._client(session).upload_photo(_photo(), io.BytesIO(b"ab"))

        assert not isinstance(exc_info.value, AuthExpiredError)
        assert exc_info.value.status_code == 409
        assert exc_info.value.body == "conflict body"
        assert len(session.calls) == 2

    def test_second_401_on_chunk_is_fatal(self):
        session = FakeSession([
            FakeResponse(200, {"uploadUrl": UPLOAD_URL}),
            FakeResponse(401, text="expired", reason="Unauthorized"),
            FakeResponse(401, text="still expired", reason="Unauthorized"),
        ])
        stream = io.BytesIO(b"0123456789")

        with pytest.raises(AuthExpiredError):
            self._client(session).upload_photo(_photo(), stream)

        assert [c.headers.get("Content-Range") for c in session.calls[1:]] == ["bytes 0-3/10"] * 2
        assert stream.closed

    def test_401_then_rejection_on_chunk(self):
        session = FakeSession([
            FakeResponse(200, {"uploadUrl": UPLOAD_URL}),
            FakeResponse(401, text="expired", reason="Unauthorized"),
            FakeResponse(500, text="server body", reason="Internal Server Error"),
        ])

        with pytest.raises(RemoteRejectionError) as exc_info:
            self._client(session).upload_photo(_photo(), io.BytesIO(b"0123456789"))

        assert exc_info.value.status_code == 500
        assert exc_info.value.body == "server body"
        assert len(session.calls) == 3

    def test_chunk_rejection_aborts_upload(self):
        session = FakeSession([
            FakeResponse(200, {"uploadUrl": UPLOAD_URL}),
            FakeResponse(416, text="range not satisfiable", reason="Requested Range Not Satisfiable"),
        ])
        stream = io.BytesIO(b"0123456789")

        with pytest.raises(RemoteRejectionError) as exc_info:
            self._client(session).upload_photo(_photo(), stream)

        assert exc_info.value.status_code == 416
        assert len(session.calls) == 2
        assert stream.closed

    def test_missing_upload_url_is_protocol_violation(self):
        session = FakeSession([FakeResponse(200, {"expirationDateTime": "2030-01-01T00:00:00Z"})])
        stream = io.BytesIO(b"abc")

        with pytest.raises(ProtocolViolationError):
            self._client(session).upload_photo(_photo(), stream)
        assert stream.closed

    def test_final_chunk_without_id_is_protocol_violation(self):
        session = FakeSession([
            FakeResponse(200, {"uploadUrl": UPLOAD_URL}),
            FakeResponse(201, {"name": "beach.jpg"}),
        ])

        with pytest.raises(ProtocolViolationError):
            self._client(session).upload_photo(_photo(), io.BytesIO(b"abc"))

    def test_final_chunk_with_202_is_protocol_violation(self):
        session = FakeSession([
            FakeResponse(200, {"uploadUrl": UPLOAD_URL}),
            FakeResponse(202, {"nextExpectedRanges": ["0-"]}),
        ])

        with pytest.raises(ProtocolViolationError):
            self._client(session).upload_photo(_photo(), io.BytesIO(b"abc"))

    def test_empty_content_uses_single_request(self):
        session = FakeSession([FakeResponse(201, {"id": "item-empty"})])

        item = self._client(session).upload_photo(_photo(), io.BytesIO(b""), "folder-1")

        assert item.id == "item-empty"
        assert len(session.calls) == 1
        call = session.calls[0]
        assert call.method == "PUT"
        assert call.data == b""
        assert call.url.endswith(":/beach.jpg:/content?@microsoft.graph.conflictBehavior=rename")
