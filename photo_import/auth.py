"""Bearer-token providers – a shared token cell that can be refreshed after a 401."""

from __future__ import annotations

import logging
import os
import sys
import threading
from collections.abc import Callable
from typing import Protocol

import msal

from photo_import.errors import AuthenticationError

logger = logging.getLogger(__name__)

SCOPES = ["Files.ReadWrite", "Files.ReadWrite.All"]


class TokenProvider(Protocol):
    def current_token(self) -> str: ...

    def refresh(self, stale_token: str | None = None) -> str: ...


class _RefreshableToken:
    """Holds one token; subclasses implement ``_acquire``.

    ``refresh(stale_token)`` is a no-op when the held token already differs
    from *stale_token*, so callers that saw the same 401 refresh only once.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._token: str | None = None

    def _acquire(self, force_refresh: bool) -> str:
        raise NotImplementedError

    def current_token(self) -> str:
        with self._lock:
            if self._token is None:
                self._token = self._acquire(force_refresh=False)
            return self._token

    def refresh(self, stale_token: str | None = None) -> str:
        with self._lock:
            if stale_token is not None and self._token is not None and self._token != stale_token:
                logger.debug("Token was already refreshed by another request")
                return self._token
            self._token = self._acquire(force_refresh=True)
            logger.info("Refreshed authorization token successfully")
            return self._token


class StaticTokenProvider(_RefreshableToken):
    """A token handed in by the caller, refreshed through an optional callable."""

    def __init__(self, token: str, refresher: Callable[[], str] | None = None):
        super().__init__()
        self._token = token
        self._refresher = refresher

    def _acquire(self, force_refresh: bool) -> str:
        if not force_refresh and self._token:
            return self._token
        if self._refresher is None:
            raise AuthenticationError("Access token expired and no refresher is configured")
        token = self._refresher()
        if not token:
            raise AuthenticationError("Refresher returned an empty access token")
        return token


class MsalTokenProvider(_RefreshableToken):
    """Acquires Graph tokens via MSAL, persisting the token cache between runs."""

    def __init__(
        self,
        client_id: str,
        tenant_id: str = "common",
        token_cache_path: str = "onedrive_token_cache.bin",
        scopes: list[str] | None = None,
    ):
        super().__init__()
        self._scopes = scopes or SCOPES
        self._cache = msal.SerializableTokenCache()
        self._token_cache_path = token_cache_path
        if os.path.exists(token_cache_path):
            with open(token_cache_path) as f:
                self._cache.deserialize(f.read())

        self._app = msal.PublicClientApplication(
            client_id,
            authority=f"https://login.microsoftonline.com/{tenant_id}",
            token_cache=self._cache,
        )

    def _save_cache(self) -> None:
        if self._cache.has_state_changed:
            with open(self._token_cache_path, "w") as f:
                f.write(self._cache.serialize())

    def _acquire(self, force_refresh: bool) -> str:
        accounts = self._app.get_accounts()
        result = None
        if accounts:
            result = self._app.acquire_token_silent(
                self._scopes, account=accounts[0], force_refresh=force_refresh
            )

        if not result:
            flow = self._app.initiate_device_flow(scopes=self._scopes)
            if "user_code" not in flow:
                raise AuthenticationError(
                    f"Device flow failed: {flow.get('error_description', 'unknown error')}"
                )
            logger.info(
                "To sign in, visit https://microsoft.com/devicelogin and enter code: %s",
                flow["user_code"],
            )
            print(f"\n  To sign in, visit https://microsoft.com/devicelogin and enter code: {flow['user_code']}\n")
            sys.stdout.flush()
            result = self._app.acquire_token_by_device_flow(flow)

        if "access_token" not in result:
            raise AuthenticationError(
                f"Authentication failed: {result.get('error_description', 'unknown error')}"
            )

        self._save_cache()
        return result["access_token"]
