"""Versioned offline cache for the static application files.

Layout on disk:
    <cache_dir>/<cache_name>/index.json      url -> {file, status, content_type}
    <cache_dir>/<cache_name>/<sha256 of url> response body

The cache name doubles as the version tag: install() fills the cache for
the current name, activate() deletes every cache with a different name.
fetch() serves cache-first, falls back to the network, stores same-origin
responses, and serves the fallback page when a navigation fails offline.
"""

import hashlib
import json
import os
import re
import shutil
import tempfile
from pathlib import Path
from urllib.parse import urljoin, urlsplit

import requests
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.timetable.config import TimetableConfig
from src.timetable.errors import PermanentError, TransientError
from src.timetable.logging import get_logger
from src.timetable.models import CachedResponse

logger = get_logger(__name__)

INDEX_FILE = "index.json"
_CACHE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class AssetCache:
    """Cache-first store for a fixed list of static assets.

    Args:
        cache_dir: Directory that holds one subdirectory per cache version.
        cache_name: Current version, e.g. "schedule-pwa-v1".
        base_url: Origin the assets are served from; relative paths resolve
            against it and only same-origin responses are cached.
        assets: Paths downloaded by install().
        fallback_page: Asset served when a navigation can't reach the network.
        session: requests.Session used for all network calls.
        attempts: Attempts per request on transient failures.
        backoff_seconds: Fixed wait between attempts.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        cache_dir: str | Path,
        cache_name: str,
        base_url: str,
        assets: list[str],
        *,
        fallback_page: str = "index.html",
        session: requests.Session | None = None,
        attempts: int = 3,
        backoff_seconds: float = 0.5,
        timeout: float = 15.0,
    ) -> None:
        if not _CACHE_NAME_RE.match(cache_name):
            raise ValueError(f"Invalid cache name {cache_name!r}")

        self.cache_dir = Path(cache_dir)
        self.cache_name = cache_name
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.assets = list(assets)
        self.fallback_page = fallback_page
        self.session = session or requests.Session()
        self.timeout = timeout
        self._retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(backoff_seconds),
            retry=retry_if_exception_type(TransientError),
            reraise=True,
        )

        self.cache_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(
        cls, config: TimetableConfig, session: requests.Session | None = None
    ) -> "AssetCache":
        return cls(
            config.cache_dir,
            config.cache_name,
            config.asset_base_url,
            config.assets,
            fallback_page=config.fallback_page,
            session=session,
            attempts=config.fetch_attempts,
            backoff_seconds=config.fetch_backoff_seconds,
            timeout=config.request_timeout_seconds,
        )

    @property
    def path(self) -> Path:
        return self.cache_dir / self.cache_name

    def url_for(self, path: str) -> str:
        """Resolve an asset path against the base URL."""
        return urljoin(self.base_url, path)

    def _same_origin(self, url: str) -> bool:
        ours, theirs = urlsplit(self.base_url), urlsplit(url)
        return (ours.scheme, ours.netloc) == (theirs.scheme, theirs.netloc)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    @staticmethod
    def _read_index(directory: Path) -> dict[str, dict]:
        index_path = directory / INDEX_FILE
        if not index_path.exists():
            return {}
        try:
            with open(index_path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("cache_index_unreadable", path=str(index_path), error=str(e))
            return {}

    @staticmethod
    def _write_index(directory: Path, index: dict[str, dict]) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".index.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(index, f, indent=2)
        os.replace(tmp_name, directory / INDEX_FILE)

    @staticmethod
    def _store(directory: Path, index: dict[str, dict], response: CachedResponse) -> None:
        body_name = hashlib.sha256(response.url.encode("utf-8")).hexdigest()
        (directory / body_name).write_bytes(response.content)
        index[response.url] = {
            "file": body_name,
            "status": response.status,
            "content_type": response.content_type,
        }

    def cache_names(self) -> list[str]:
        """Names of every cache version present on disk."""
        return sorted(
            p.name
            for p in self.cache_dir.iterdir()
            if p.is_dir() and not p.name.startswith(".")
        )

    def keys(self) -> list[str]:
        """URLs stored in the current cache."""
        return sorted(self._read_index(self.path))

    def match(self, url: str) -> CachedResponse | None:
        """Cached response for a URL in the current cache, if any."""
        meta = self._read_index(self.path).get(url)
        if meta is None:
            return None
        body_path = self.path / meta["file"]
        if not body_path.exists():
            logger.warning("cache_body_missing", url=url, file=meta["file"])
            return None
        return CachedResponse(
            url=url,
            status=meta.get("status", 200),
            content_type=meta.get("content_type", "application/octet-stream"),
            content=body_path.read_bytes(),
            from_cache=True,
        )

    def put(self, response: CachedResponse) -> None:
        """Store a response in the current cache."""
        self.path.mkdir(parents=True, exist_ok=True)
        index = self._read_index(self.path)
        self._store(self.path, index, response)
        self._write_index(self.path, index)
        logger.debug("cache_put", cache=self.cache_name, url=response.url)

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------
    def _request_once(self, method: str, url: str) -> CachedResponse:
        try:
            resp = self.session.request(method, url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("asset_request_failed", method=method, url=url, error=str(e))
            raise TransientError(f"{method} {url} failed: {e}") from e

        if resp.status_code >= 500:
            raise TransientError(f"{method} {url} returned {resp.status_code}")
        if resp.status_code >= 400:
            raise PermanentError(f"{method} {url} returned {resp.status_code}")

        return CachedResponse(
            url=url,
            status=resp.status_code,
            content_type=resp.headers.get("Content-Type", "application/octet-stream"),
            content=resp.content,
        )

    def _request(self, method: str, url: str) -> CachedResponse:
        return self._retrying(self._request_once, method, url)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def install(self) -> int:
        """Download every asset into a fresh copy of the current cache.

        All-or-nothing: the new copy replaces the old one only after every
        asset was fetched.

        Returns:
            Number of assets cached.

        Raises:
            TransientError: If an asset stayed unreachable after retries.
            PermanentError: If an asset returned a client error.
        """
        staging = Path(tempfile.mkdtemp(dir=self.cache_dir, prefix=f".{self.cache_name}."))
        try:
            index: dict[str, dict] = {}
            for asset in self.assets:
                response = self._request("GET", self.url_for(asset))
                self._store(staging, index, response)
            self._write_index(staging, index)

            if self.path.exists():
                shutil.rmtree(self.path)
            staging.rename(self.path)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        logger.info("cache_installed", cache=self.cache_name, assets=len(index))
        return len(index)

    def activate(self) -> list[str]:
        """Delete every cache whose name differs from the current one.

        Returns:
            Names of the deleted caches.
        """
        removed = [name for name in self.cache_names() if name != self.cache_name]
        for name in removed:
            shutil.rmtree(self.cache_dir / name)
        if removed:
            logger.info("old_caches_removed", cache=self.cache_name, removed=removed)
        return removed

    def fetch(self, path: str, method: str = "GET", navigate: bool = False) -> CachedResponse:
        """Serve a request the way the offline worker does.

        Args:
            path: Asset path or absolute URL.
            method: HTTP method; only GET is cached or retried, anything else
                goes to the network once.
            navigate: True for page navigations, which may fall back to the
                cached fallback page when the network is down.

        Raises:
            TransientError: Network unavailable and no cached copy or fallback applies.
            PermanentError: Client error response, or offline navigation with
                no cached fallback page.
        """
        url = self.url_for(path)
        method = method.upper()
        if method != "GET":
            return self._request_once(method, url)

        cached = self.match(url)
        if cached is not None:
            logger.debug("cache_hit", url=url)
            return cached

        try:
            response = self._request("GET", url)
        except TransientError:
            if not navigate:
                raise
            fallback = self.match(self.url_for(self.fallback_page))
            if fallback is None:
                raise PermanentError(
                    f"Offline and fallback page {self.fallback_page!r} is not cached"
                )
            logger.info("serving_fallback_page", url=url, fallback=self.fallback_page)
            return fallback

        if self._same_origin(url):
            self.put(response)
        return response
