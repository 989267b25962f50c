"""Run each import step at most once per key and remember what it produced."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

import requests

from photo_import.errors import PhotoImportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures of a single entity; anything else is a bug and propagates.
RECOVERABLE_ERRORS = (PhotoImportError, requests.RequestException, OSError)


@dataclass(frozen=True)
class ImportFailure:
    key: str
    label: str
    message: str
    error_type: str


class IdempotentImportExecutor:
    """Caches step results by key for the lifetime of one job."""

    def __init__(self) -> None:
        self._results: dict[str, str] = {}
        self._errors: dict[str, ImportFailure] = {}

    # ── lookup ──────────────────────────────────────────────────────

    def is_key_cached(self, key: str) -> bool:
        return key in self._results

    def get_cached_value(self, key: str) -> str:
        if key not in self._results:
            raise KeyError(f"No cached result for {key!r}")
        return self._results[key]

    def get_error(self, key: str) -> ImportFailure | None:
        return self._errors.get(key)

    @property
    def errors(self) -> list[ImportFailure]:
        return list(self._errors.values())

    @property
    def successes(self) -> dict[str, str]:
        return dict(self._results)

    # ── execution ───────────────────────────────────────────────────

    def execute_or_raise(self, key: str, label: str, fn: Callable[[], T]) -> T:
        """Return the cached result for *key*, or run *fn* once and cache it."""
        if key in self._results:
            logger.debug("Already imported %s (%s), using cached result", label, key)
            return self._results[key]  # type: ignore[return-value]

        try:
            result = fn()
        except Exception as exc:
            self._errors[key] = ImportFailure(key, label, str(exc), type(exc).__name__)
            raise

        self._results[key] = result  # type: ignore[assignment]
        self._errors.pop(key, None)
        self._store(key, result)
        return result

    def execute_and_swallow_errors(self, key: str, label: str, fn: Callable[[], T]) -> T | None:
        """Like :meth:`execute_or_raise`, but an entity failure is recorded and ``None`` returned."""
        try:
            return self.execute_or_raise(key, label, fn)
        except RECOVERABLE_ERRORS as exc:
            logger.error("Failed to import %s (%s): %s", label, key, exc)
            logger.debug("Traceback for %s", key, exc_info=True)
            return None

    def _store(self, key: str, result: object) -> None:
        """Hook for executors that persist results."""


class JsonFileIdempotentExecutor(IdempotentImportExecutor):
    """Persists successful results to a JSON file so a rerun of the job skips them.

    Failed keys are not written, so they are attempted again on the next run.
    """

    def __init__(self, state_file: str | Path):
        super().__init__()
        self.state_file = Path(state_file)
        self._load()

    def _load(self) -> None:
        if not self.state_file.exists():
            logger.info("No existing state file at %s, starting fresh", self.state_file)
            return
        try:
            with open(self.state_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not load state from %s: %s", self.state_file, exc)
            return
        if not isinstance(data, dict) or not isinstance(data.get("results", {}), dict):
            logger.warning("State file %s has unexpected structure, starting fresh", self.state_file)
            return
        self._results = {str(k): v for k, v in data.get("results", {}).items()}
        logger.info("Loaded %d completed step(s) from %s", len(self._results), self.state_file)

    def _store(self, key: str, result: object) -> None:
        tmp = self.state_file.with_suffix(self.state_file.suffix + ".tmp")
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump({"results": self._results}, f, indent=2)
            os.replace(tmp, self.state_file)
        except OSError as exc:
            # The in-memory cache still holds the result for this run.
            logger.warning("Could not save state for %s to %s: %s", key, self.state_file, exc)
