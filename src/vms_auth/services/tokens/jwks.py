"""
JWKS cache with per-URI single-flight refresh.

Key sets are cached for ``ttl_seconds`` after a successful fetch. Concurrent
callers that find the same URI missing or expired share one outbound request:
the first to take the URI's lock fetches, the rest wait and reuse its result.
When a refresh fails but an older key set is cached, that set is handed back
marked ``stale`` so existing keys keep working through a provider outage.
A failed attempt is remembered: callers that were already waiting when it
failed reuse the failure, and nobody retries the URI until
``failure_backoff_seconds`` have passed.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

import httpx

from vms_auth.exceptions import JWKSFetchError, JWKSFetchTimeoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedKeySet:
    uri: str
    # kid -> JWK dict; keys published without a kid sit under None
    keys: Dict[Optional[str], dict]
    fetched_at: float
    stale: bool = False
    fetch_error: Optional[JWKSFetchError] = None

    def find(self, kid: Optional[str]) -> Optional[dict]:
        if kid is None:
            # A kid-less token is only unambiguous against a single-key set
            if len(self.keys) == 1:
                return next(iter(self.keys.values()))
            return None
        return self.keys.get(kid)


@dataclass(frozen=True)
class FailedFetch:
    attempt: int
    failed_at: float
    error: JWKSFetchError


class JWKSCache:
    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        ttl_seconds: float = 600,
        timeout_seconds: float = 5.0,
        failure_backoff_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = http_client
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.failure_backoff_seconds = failure_backoff_seconds
        self._clock = clock
        self._entries: Dict[str, CachedKeySet] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._attempts: Dict[str, int] = {}
        self._failures: Dict[str, FailedFetch] = {}

    def peek(self, uri: str) -> Optional[CachedKeySet]:
        return self._entries.get(uri)

    def cached_uris(self) -> List[str]:
        return list(self._entries)

    def is_fresh(self, entry: CachedKeySet) -> bool:
        return self._clock() - entry.fetched_at < self.ttl_seconds

    def evict(self, uri: str) -> bool:
        self._failures.pop(uri, None)
        removed = self._entries.pop(uri, None) is not None
        if removed:
            logger.info("Evicted JWKS entry", extra={"jwks_uri": uri})
        return removed

    async def get(self, uri: str) -> CachedKeySet:
        """Return a fresh key set, fetching it when missing or expired."""
        entry = self._entries.get(uri)
        if entry is not None and self.is_fresh(entry):
            return entry
        return await self._refresh(uri, seen=entry, force=False)

    async def refresh(self, uri: str, seen: Optional[CachedKeySet]) -> CachedKeySet:
        """
        Refetch regardless of age, unless another caller already replaced
        ``seen`` while we waited for the lock.
        """
        return await self._refresh(uri, seen=seen, force=True)

    async def _refresh(
        self, uri: str, seen: Optional[CachedKeySet], force: bool
    ) -> CachedKeySet:
        arrived_after = self._attempts.get(uri, 0)
        lock = self._locks.setdefault(uri, asyncio.Lock())
        async with lock:
            current = self._entries.get(uri)
            if current is not None:
                if force and not _same_fetch(current, seen):
                    return current
                if not force and self.is_fresh(current):
                    return current

            failure = self._failures.get(uri)
            if failure is not None and (
                failure.attempt > arrived_after
                or self._clock() - failure.failed_at < self.failure_backoff_seconds
            ):
                return self._fall_back(uri, current, failure.error)

            attempt = self._attempts[uri] = self._attempts.get(uri, 0) + 1
            try:
                keys = await self._fetch(uri)
            except JWKSFetchError as e:
                self._failures[uri] = FailedFetch(attempt, self._clock(), e)
                logger.warning(
                    "JWKS fetch failed",
                    extra={"jwks_uri": uri, "error_code": e.code, "attempt": attempt},
                )
                return self._fall_back(uri, current, e)

            self._failures.pop(uri, None)
            entry = CachedKeySet(uri=uri, keys=keys, fetched_at=self._clock())
            self._entries[uri] = entry
            logger.info(
                "Fetched JWKS", extra={"jwks_uri": uri, "key_count": len(keys)}
            )
            return entry

    def _fall_back(
        self, uri: str, current: Optional[CachedKeySet], error: JWKSFetchError
    ) -> CachedKeySet:
        """Serve the last good key set after a failed fetch, or raise."""
        if current is None:
            raise error
        logger.debug(
            "Serving stale key set",
            extra={
                "jwks_uri": uri,
                "error_code": error.code,
                "age_seconds": round(self._clock() - current.fetched_at, 1),
            },
        )
        return replace(current, stale=True, fetch_error=error)

    async def _fetch(self, uri: str) -> Dict[Optional[str], dict]:
        try:
            response = await asyncio.wait_for(
                self._get(uri), timeout=self.timeout_seconds
            )
            response.raise_for_status()
            document = response.json()
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise JWKSFetchTimeoutError(details={"jwks_uri": uri}) from e
        except (httpx.HTTPError, ValueError) as e:
            raise JWKSFetchError(details={"jwks_uri": uri, "reason": str(e)}) from e

        raw_keys = document.get("keys") if isinstance(document, dict) else None
        if not isinstance(raw_keys, list):
            raise JWKSFetchError(
                "JWKS document has no keys", details={"jwks_uri": uri}
            )

        keys: Dict[Optional[str], dict] = {}
        for jwk in raw_keys:
            if not isinstance(jwk, dict) or jwk.get("kty") != "RSA":
                continue
            if jwk.get("use", "sig") != "sig":
                continue
            keys[jwk.get("kid")] = jwk
        return keys

    async def _get(self, uri: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(uri, timeout=self.timeout_seconds)
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.get(uri)


def _same_fetch(a: CachedKeySet, b: Optional[CachedKeySet]) -> bool:
    return b is not None and a.fetched_at == b.fetched_at and a.keys is b.keys
