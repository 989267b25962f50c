"""Importer – creates album folders first, then uploads each photo into its folder."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from photo_import.content import ContentResolver
from photo_import.errors import MissingFolderError
from photo_import.graph_client import GraphPhotosClient
from photo_import.idempotent import IdempotentImportExecutor
from photo_import.models import PhotoAlbum, PhotoModel, PhotosContainerResource

logger = logging.getLogger(__name__)


@dataclass
class StepOutcome:
    """What happened to one album or photo."""

    key: str
    label: str
    kind: str
    ok: bool
    value: str | None = None
    cached: bool = False
    error: str | None = None


@dataclass
class ImportResult:
    """Aggregated result of one import run."""

    job_id: str
    outcomes: list[StepOutcome] = field(default_factory=list)

    def _select(self, kind: str | None = None, **attrs) -> list[StepOutcome]:
        return [
            o for o in self.outcomes
            if (kind is None or o.kind == kind)
            and all(getattr(o, name) == value for name, value in attrs.items())
        ]

    @property
    def created_folders(self) -> list[StepOutcome]:
        return self._select("album", ok=True, cached=False)

    @property
    def uploaded(self) -> list[StepOutcome]:
        return self._select("photo", ok=True, cached=False)

    @property
    def skipped(self) -> list[StepOutcome]:
        return self._select(ok=True, cached=True)

    @property
    def failed(self) -> list[StepOutcome]:
        return self._select(ok=False)

    @property
    def all_ok(self) -> bool:
        return len(self.failed) == 0

    def summary(self) -> str:
        lines = [
            f"Folders created : {len(self.created_folders)}",
            f"Photos uploaded : {len(self.uploaded)}",
            f"Already imported: {len(self.skipped)}",
            f"Failed          : {len(self.failed)}",
        ]
        if self.failed:
            lines.append("\nFailed items:")
            for o in self.failed:
                lines.append(f"  - {o.label} ({o.key}): {o.error}")
        return "\n".join(lines)


class PhotosImporter:
    """Imports a batch of albums and photos into OneDrive.

    Each album and photo is a separate idempotent step, so one failure does
    not stop the rest of the batch and a rerun only repeats what failed.
    """

    def __init__(self, client: GraphPhotosClient, content: ContentResolver):
        self._client = client
        self._content = content

    def import_item(
        self,
        job_id: str,
        executor: IdempotentImportExecutor,
        resource: PhotosContainerResource,
        on_step: Callable[[StepOutcome], None] | None = None,
    ) -> ImportResult:
        logger.debug(
            "%s: Importing %d albums and %d photos",
            job_id, len(resource.albums), len(resource.photos),
        )
        result = ImportResult(job_id=job_id)

        # Photos look up their folder id in the cache, so every album goes first.
        for album in resource.albums:
            outcome = self._run(
                executor, album.id, album.name, "album",
                lambda album=album: self._create_folder(album),
            )
            result.outcomes.append(outcome)
            if on_step:
                on_step(outcome)

        for photo in resource.photos:
            outcome = self._run(
                executor, photo.idempotency_key, photo.title, "photo",
                lambda photo=photo: self._import_single_photo(job_id, executor, photo),
            )
            result.outcomes.append(outcome)
            if on_step:
                on_step(outcome)

        logger.info(
            "%s: %d folder(s) created, %d photo(s) uploaded, %d failed",
            job_id, len(result.created_folders), len(result.uploaded), len(result.failed),
        )
        return result

    @staticmethod
    def _run(
        executor: IdempotentImportExecutor,
        key: str,
        label: str,
        kind: str,
        fn: Callable[[], str],
    ) -> StepOutcome:
        cached = executor.is_key_cached(key)
        value = executor.execute_and_swallow_errors(key, label, fn)
        if executor.is_key_cached(key):
            return StepOutcome(key, label, kind, ok=True, value=value, cached=cached)
        failure = executor.get_error(key)
        return StepOutcome(
            key, label, kind, ok=False,
            error=failure.message if failure else "unknown error",
        )

    def _create_folder(self, album: PhotoAlbum) -> str:
        return self._client.create_folder(album.name)

    def _import_single_photo(
        self,
        job_id: str,
        executor: IdempotentImportExecutor,
        photo: PhotoModel,
    ) -> str:
        folder_id = None
        if photo.album_id:
            if not executor.is_key_cached(photo.album_id):
                raise MissingFolderError(
                    f"Album {photo.album_id} of {photo.title} has no OneDrive folder"
                )
            folder_id = executor.get_cached_value(photo.album_id)

        stream = self._content.open(job_id, photo)
        with stream:
            item = self._client.upload_photo(photo, stream, folder_id)
        return item.id
