"""Albums, photos and the Graph response payloads exchanged while importing them."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from photo_import.errors import ManifestError


class PhotoAlbum(BaseModel):
    """A source album; becomes one OneDrive folder."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    name: str
    description: str | None = None


class PhotoModel(BaseModel):
    """A source photo and where its bytes can be read from."""

    model_config = ConfigDict(populate_by_name=True)

    data_id: str = Field(alias="dataId", min_length=1)
    title: str = Field(min_length=1)
    album_id: str | None = Field(default=None, alias="albumId")
    media_type: str = Field(default="application/octet-stream", alias="mediaType")
    fetchable_url: str | None = Field(default=None, alias="fetchableUrl")
    in_temp_store: bool = Field(default=False, alias="inTempStore")
    size: int | None = Field(default=None, ge=0)

    @property
    def idempotency_key(self) -> str:
        # An albumless photo keeps the literal "None" prefix so keys stay stable across runs.
        return f"{self.album_id}-{self.data_id}"


class PhotosContainerResource(BaseModel):
    """One batch of albums and photos to import."""

    albums: list[PhotoAlbum] = Field(default_factory=list)
    photos: list[PhotoModel] = Field(default_factory=list)

    @classmethod
    def from_file(cls, path: str | Path) -> "PhotosContainerResource":
        """Load a batch from a JSON manifest on disk."""
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise ManifestError(f"Cannot read manifest {path}: {exc}") from exc
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "PhotosContainerResource":
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ManifestError(f"Invalid manifest: {exc}") from exc


@dataclass(frozen=True)
class Chunk:
    """One contiguous byte range of a photo; ``start`` and ``end`` are inclusive."""

    data: bytes
    start: int
    end: int

    @property
    def size(self) -> int:
        return len(self.data)

    def content_range(self, total: int) -> str:
        return f"bytes {self.start}-{self.end}/{total}"


# ── Graph response payloads ─────────────────────────────────────────


class FolderCreated(BaseModel):
    id: str = Field(min_length=1)


class UploadSessionCreated(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    upload_url: str = Field(alias="uploadUrl", min_length=1)
    expiration_date_time: str | None = Field(default=None, alias="expirationDateTime")
    next_expected_ranges: list[str] = Field(default_factory=list, alias="nextExpectedRanges")


class DriveItem(BaseModel):
    """The item Graph returns once an upload completes."""

    id: str = Field(min_length=1)
    name: str | None = None
    size: int | None = None
