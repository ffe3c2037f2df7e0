from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from typing import Callable, Optional

import httpx

from ..models import Credential
from ..utils.exceptions import AuthenticationError
from ..utils.logger import Log


class ProviderAuthenticator:
    """Fetches access tokens with the OAuth2 client-credentials grant."""

    def __init__(
        self,
        http: httpx.Client,
        *,
        auth_url: str,
        client_id: str,
        client_secret: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.http = http
        self.auth_url = auth_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.clock = clock

    def fetch_credential(self) -> Credential:
        try:
            response = self.http.post(
                self.auth_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
            )
            response.raise_for_status()
            body = response.json()
            token = body["access_token"]
            expires_in = float(body["expires_in"])
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            raise AuthenticationError(f"Failed to authenticate with provider: {exc}") from exc
        credential = Credential(token=token, expires_at=self.clock() + expires_in)
        Log.info(f"Provider authentication successful, token valid for {expires_in:.0f}s")
        return credential


class CredentialCache:
    """Caches the provider credential and refreshes it single-flight.

    Readers of a still-valid credential never take the lock. When a refresh
    is needed the first caller becomes the leader and performs it; callers
    arriving while it is in flight wait on the same future and receive the
    same credential or the same ``AuthenticationError``. A failed refresh
    leaves the cache empty so the next call tries again.
    """

    def __init__(
        self,
        refresh: Callable[[], Credential],
        *,
        safety_margin_seconds: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._refresh = refresh
        self.safety_margin = safety_margin_seconds
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._inflight: Optional["Future[Credential]"] = None
        self._lock = threading.Lock()

    def _valid(self, credential: Optional[Credential]) -> bool:
        return credential is not None and credential.is_valid(self._clock(), self.safety_margin)

    def get_credential(self) -> Credential:
        credential = self._credential
        if self._valid(credential):
            return credential  # type: ignore[return-value]

        with self._lock:
            credential = self._credential
            if self._valid(credential):
                return credential  # type: ignore[return-value]
            inflight = self._inflight
            leader = inflight is None
            if leader:
                inflight = self._inflight = Future()

        if not leader:
            return inflight.result()  # type: ignore[union-attr]
        return self._lead_refresh(inflight)  # type: ignore[arg-type]

    def _lead_refresh(self, inflight: "Future[Credential]") -> Credential:
        try:
            credential = self._refresh()
        except BaseException as exc:
            if isinstance(exc, AuthenticationError):
                error = exc
            elif isinstance(exc, Exception):
                error = AuthenticationError(f"Credential refresh failed: {exc}")
            else:
                error = AuthenticationError("Credential refresh interrupted")
            with self._lock:
                self._credential = None
                self._inflight = None
            inflight.set_exception(error)
            # interrupts such as KeyboardInterrupt keep propagating in the leader
            if error is exc or not isinstance(exc, Exception):
                raise
            raise error from exc

        with self._lock:
            self._credential = credential
            self._inflight = None
        inflight.set_result(credential)
        return credential
