"""
Poster proxy service for Schedules Direct artwork.

Serves one poster per program from a local image cache, downloading it from
Schedules Direct on first use. Content types come from magic bytes, files
are written atomically, and concurrent requests for the same image share a
single download.

Two ways to pick the image:

- pinned: an explicit image id, or an override matched by program title.
  Pinned files have no TTL.
- resolved: the program -> image index, else the selector run over the
  program's artwork metadata.

While the global backoff gate is active nothing is fetched upstream; cached
files (even expired ones) are served and everything else gets a 429.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from email.utils import formatdate
from pathlib import Path
from typing import NoReturn, Optional, TypeVar

import httpx
from pydantic import BaseModel
from starlette.responses import Response

from guideart.exceptions import (
    BadRequestError,
    CachedImageMissingError,
    ExternalServiceError,
    ImageFetchError,
    NonImagePayloadError,
    NotFoundError,
    RateLimitError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamThrottledError,
)
from guideart.models.images import ImageCandidate, ProgramMetadata
from guideart.services.backoff_gate import (
    MIDNIGHT_GRACE_MINUTES,
    BackoffGate,
    next_utc_midnight_plus,
    parse_retry_after,
    retry_after_seconds,
)
from guideart.services.download_coordinator import DownloadCoordinator
from guideart.services.image_blocklist import ImageBlocklist, purge_blocked_image
from guideart.services.image_index import ProgramImageIndex
from guideart.services.image_overrides import ImageOverrides
from guideart.services.image_selector import SelectionConfig, select_image
from guideart.services.metadata_cache import ProgramMetadataCache
from guideart.services.schedules_direct import (
    CODE_TOKEN_EXPIRED,
    QUOTA_CODES,
    SchedulesDirectClient,
    is_quota_payload,
    json_code,
)
from guideart.services.token_manager import TokenManager
from guideart.utils.clock import Clock, utc_now
from guideart.utils.files import atomic_write_bytes
from guideart.utils.image_urls import build_fetch_url

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Maximum accepted image size: 10 MB
# ---------------------------------------------------------------------------
_MAX_IMAGE_BYTES = 10 * 1024 * 1024

# ---------------------------------------------------------------------------
# Cache-Control for served posters (image ids never change content)
# ---------------------------------------------------------------------------
_CACHE_CONTROL_HIT = "public, max-age=31536000, immutable"

_IMAGE_SUFFIX = ".jpg"

_METADATA_KEY_PREFIX = "metadata:"

T = TypeVar("T")


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  Pydantic V2 models                                                ║
# ╚══════════════════════════════════════════════════════════════════════╝


class PosterProxyConfig(BaseModel):
    """Configuration for the poster proxy.

    Attributes
    ----------
    image_dir : Path
        Directory holding ``<image_id>.jpg`` files.
    sd_base_url : str
        Schedules Direct API base URL used for bare image ids.
    poster_aspect : str
        Exact aspect to require, or ``"all"``.
    poster_categories : list[str]
        Allowed categories in rank order.
    image_cache_ttl_days : int
        Age after which a resolved poster is refreshed (0 = never).
    download_wait_timeout : float
        Seconds a waiter blocks on another request's download.
    throttle_pause_seconds : int
        Pause applied on a 429 without a usable ``Retry-After``.
    max_image_bytes : int
        Largest accepted image payload.
    """

    image_dir: Path
    sd_base_url: str
    poster_aspect: str = "2x3"
    poster_categories: list[str] = []
    image_cache_ttl_days: int = 30
    download_wait_timeout: float = 60.0
    throttle_pause_seconds: int = 900
    max_image_bytes: int = _MAX_IMAGE_BYTES

    def selection(self) -> SelectionConfig:
        """Selector configuration derived from these settings."""
        if self.poster_categories:
            return SelectionConfig(
                desired_aspect=self.poster_aspect,
                allowed_categories=tuple(self.poster_categories),
            )
        return SelectionConfig(desired_aspect=self.poster_aspect)


class CacheStats(BaseModel):
    """Statistics about the poster cache.

    Attributes
    ----------
    image_count : int
        Number of cached poster files.
    total_size_bytes : int
        Disk usage of all cached posters.
    indexed_programs : int
        Programs with an index entry.
    pinned_images : int
        Image ids pinned by the override list.
    blocked_images : int
        Image ids on the blocklist.
    oldest_file : datetime | None
        Modification time of the oldest cached file.
    newest_file : datetime | None
        Modification time of the newest cached file.
    """

    image_count: int
    total_size_bytes: int
    indexed_programs: int
    pinned_images: int
    blocked_images: int
    oldest_file: Optional[datetime] = None
    newest_file: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Payload inspection
# ---------------------------------------------------------------------------


def detect_image_type(body: bytes) -> Optional[str]:
    """Detect an image MIME type from magic bytes.

    Parameters
    ----------
    body : bytes
        Raw payload (only the first 12 bytes are inspected).

    Returns
    -------
    str | None
        ``image/jpeg``, ``image/png``, ``image/webp`` or ``image/gif``;
        None if the payload is not a recognised image.
    """
    header = body[:12]
    if header[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if header[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if header[:4] == b"RIFF" and header[8:12] == b"WEBP":
        return "image/webp"
    if header[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return None


def _is_auth_rejection(response: httpx.Response) -> bool:
    if response.status_code in (401, 403):
        return True
    if detect_image_type(response.content) is not None:
        return False
    return json_code(response.content) == CODE_TOKEN_EXPIRED


def normalize_program_id(program_id: str) -> str:
    """Trim whitespace and an optional ``.jpg`` suffix; blank ids are rejected."""
    value = (program_id or "").strip()
    if value.endswith(_IMAGE_SUFFIX):
        value = value[: -len(_IMAGE_SUFFIX)]
    if not value:
        raise BadRequestError("Missing program id")
    return value


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  Service                                                            ║
# ╚══════════════════════════════════════════════════════════════════════╝


class PosterProxyService:
    """Resolves, downloads, caches and serves program posters.

    Parameters
    ----------
    config : PosterProxyConfig
        Proxy configuration.
    client : SchedulesDirectClient
        Upstream API client.
    tokens : TokenManager
        Source of upstream session tokens.
    gate : BackoffGate
        Global upstream pause.
    index : ProgramImageIndex
        Program -> image mapping.
    coordinator : DownloadCoordinator
        Per-image download de-duplication.
    metadata : ProgramMetadataCache
        Cached artwork metadata.
    overrides : ImageOverrides
        Title -> image pins.
    blocklist : ImageBlocklist
        Image ids that must never be served.
    clock : Clock | None, optional
        Source of "now" (default: aware UTC wall clock).
    """

    def __init__(
        self,
        config: PosterProxyConfig,
        client: SchedulesDirectClient,
        tokens: TokenManager,
        gate: BackoffGate,
        index: ProgramImageIndex,
        coordinator: DownloadCoordinator,
        metadata: ProgramMetadataCache,
        overrides: ImageOverrides,
        blocklist: ImageBlocklist,
        clock: Optional[Clock] = None,
    ) -> None:
        self._config = config
        self._client = client
        self._tokens = tokens
        self._gate = gate
        self._index = index
        self._coordinator = coordinator
        self._metadata = metadata
        self._overrides = overrides
        self._blocklist = blocklist
        self._clock = clock or utc_now
        self._selection = config.selection()
        self.upstream_image_fetches = 0

    # ------------------------------------------------------------------
    # Paths and freshness
    # ------------------------------------------------------------------

    def _image_path(self, image_id: str) -> Path:
        return self._config.image_dir / f"{image_id}{_IMAGE_SUFFIX}"

    def _is_expired(self, path: Path) -> bool:
        ttl_days = self._config.image_cache_ttl_days
        if ttl_days <= 0:
            return False
        try:
            mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        except OSError:
            return True
        return self._clock() - mtime > timedelta(days=ttl_days)

    # ------------------------------------------------------------------
    # Serve a cached file as a Response
    # ------------------------------------------------------------------

    def _serve_cached_file(self, path: Path, cache_status: str) -> Response:
        """Serve a cached poster with long-lived cache headers.

        Parameters
        ----------
        path : Path
            Cached image on disk.
        cache_status : str
            ``X-Cache`` value: ``HIT``, ``MISS`` or ``STALE``.

        Returns
        -------
        Response
            Image bytes with Content-Type, Cache-Control, Last-Modified and
            X-Cache headers.

        Raises
        ------
        CachedImageMissingError
            If the file was removed (e.g. by the evictor) before it was read.
        """
        try:
            body = path.read_bytes()
            mtime = path.stat().st_mtime
        except OSError as e:
            raise CachedImageMissingError(path) from e
        return Response(
            content=body,
            media_type=detect_image_type(body) or "image/jpeg",
            headers={
                "Cache-Control": _CACHE_CONTROL_HIT,
                "Last-Modified": formatdate(mtime, usegmt=True),
                "X-Cache": cache_status,
            },
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_program_image(
        self,
        program_id: str,
        image_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Response:
        """Serve the poster for ``program_id``.

        Parameters
        ----------
        program_id : str
            Program identifier; a trailing ``.jpg`` is ignored.
        image_id : str | None, optional
            Explicit image id to serve (pinned path).
        title : str | None, optional
            Program title used for override matching when the program's
            title is not cached.

        Returns
        -------
        Response
            Image response.

        Raises
        ------
        BadRequestError
            Blank program id.
        NotFoundError
            No acceptable poster exists (or the pinned image is blocked).
        RateLimitError
            Upstream is paused and nothing usable is cached.
        ExternalServiceError
            Upstream failed in a way a retry will not fix.
        """
        program_id = normalize_program_id(program_id)

        pinned = (image_id or "").strip()
        if pinned.endswith(_IMAGE_SUFFIX):
            pinned = pinned[: -len(_IMAGE_SUFFIX)]
        if not pinned:
            pinned = self._override_for(program_id, title) or ""

        try:
            try:
                return await self._serve(program_id, pinned)
            except CachedImageMissingError as e:
                logger.info(
                    "Cached poster %s vanished while serving %s; retrying", e.path, program_id
                )
            try:
                return await self._serve(program_id, pinned)
            except CachedImageMissingError as e:
                raise NotFoundError(
                    "Poster", program_id, hint="The cached poster was removed while serving."
                ) from e
        except UpstreamThrottledError as e:
            raise RateLimitError(
                "Schedules Direct image fetches are paused",
                details={"paused_until": e.paused_until.isoformat() if e.paused_until else None},
                retry_after=e.retry_after or None,
            ) from e
        except UpstreamError as e:
            raise ExternalServiceError(
                f"Schedules Direct request failed: {e.message}",
                details={"program_id": program_id, "error": type(e).__name__},
            ) from e

    async def _serve(self, program_id: str, pinned: str) -> Response:
        if pinned:
            return await self._serve_pinned(program_id, pinned)
        return await self._serve_resolved(program_id)

    def _override_for(self, program_id: str, title: Optional[str]) -> Optional[str]:
        cached_title = self._metadata.title_for(program_id)
        for candidate_title in (cached_title, title):
            image_id = self._overrides.image_for_title(candidate_title)
            if image_id:
                logger.debug("Override matched %s -> %s", candidate_title, image_id)
                return image_id
        return None

    # ------------------------------------------------------------------
    # Pinned path
    # ------------------------------------------------------------------

    async def _serve_pinned(self, program_id: str, image_id: str) -> Response:
        if self._blocklist.is_blocked(image_id):
            purge_blocked_image(image_id, self._config.image_dir, self._index)
            raise NotFoundError("Poster", image_id, hint="The image is blocklisted.")

        path = self._image_path(image_id)
        if path.is_file():
            self._index.set(program_id, image_id)
            return self._serve_cached_file(path, "HIT")

        self._raise_if_paused()
        path, cache_status = await self._download(image_id, image_id, honor_ttl=False)
        self._index.set(program_id, image_id)
        return self._serve_cached_file(path, cache_status)

    # ------------------------------------------------------------------
    # Resolved path
    # ------------------------------------------------------------------

    async def _serve_resolved(self, program_id: str) -> Response:
        stale_path: Optional[Path] = None
        stale_image_id = ""

        entry = self._index.get(program_id)
        if entry is not None:
            if self._blocklist.is_blocked(entry.image_id):
                purge_blocked_image(entry.image_id, self._config.image_dir, self._index)
            else:
                path = self._image_path(entry.image_id)
                if path.is_file():
                    if not self._is_expired(path):
                        logger.debug("Cache HIT for %s -> %s", program_id, entry.image_id)
                        self._index.set(program_id, entry.image_id)
                        return self._serve_cached_file(path, "HIT")
                    stale_path, stale_image_id = path, entry.image_id
                else:
                    logger.info(
                        "Cached poster %s for %s is missing; re-resolving",
                        entry.image_id,
                        program_id,
                    )
                    self._index.delete(program_id)

        blocked, remaining = self._gate.should_block()
        if blocked:
            if stale_path is not None:
                return self._serve_stale(program_id, stale_image_id, stale_path)
            response = self._serve_from_cached_metadata(program_id)
            if response is not None:
                return response
            raise UpstreamThrottledError(
                "Upstream paused",
                retry_after=retry_after_seconds(remaining),
                paused_until=self._gate.paused_until,
            )

        try:
            candidate = await self._choose_candidate(program_id)
            if candidate is None:
                if stale_path is not None:
                    return self._serve_stale(program_id, stale_image_id, stale_path)
                raise NotFoundError(
                    "Poster", program_id, hint="No candidate image passed selection."
                )
            image_id = candidate.image_id
            path, cache_status = await self._download(image_id, candidate.uri, honor_ttl=True)
        except UpstreamError as e:
            if stale_path is None:
                raise
            logger.warning("Refresh of %s failed (%s); serving stale poster", program_id, e.message)
            return self._serve_stale(program_id, stale_image_id, stale_path)

        self._index.set(program_id, image_id)
        return self._serve_cached_file(path, cache_status)

    def _serve_stale(self, program_id: str, image_id: str, path: Path) -> Response:
        self._index.set(program_id, image_id)
        return self._serve_cached_file(path, "STALE")

    def _serve_from_cached_metadata(self, program_id: str) -> Optional[Response]:
        """While paused, serve the selected poster if it is already on disk.

        Only cached metadata is consulted; nothing is fetched upstream.
        """
        candidate = self._select(program_id, self._metadata.get(program_id))
        if candidate is None:
            return None
        path = self._image_path(candidate.image_id)
        if not path.is_file():
            return None
        logger.info(
            "Upstream paused; serving cached poster %s for %s", candidate.image_id, program_id
        )
        self._index.set(program_id, candidate.image_id)
        return self._serve_cached_file(path, "STALE" if self._is_expired(path) else "HIT")

    async def _choose_candidate(self, program_id: str) -> Optional[ImageCandidate]:
        return self._select(program_id, await self._load_metadata(program_id))

    def _select(
        self, program_id: str, metadata: Optional[ProgramMetadata]
    ) -> Optional[ImageCandidate]:
        if metadata is None:
            return None
        candidates = [
            c for c in metadata.candidates if not self._blocklist.is_blocked(c.image_id)
        ]
        chosen = select_image(candidates, self._selection)
        if chosen is not None:
            logger.info(
                "Resolved %s -> %s (category=%s aspect=%s %dx%d tier=%s)",
                program_id,
                chosen.image_id,
                chosen.category,
                chosen.aspect,
                chosen.width,
                chosen.height,
                chosen.tier,
            )
        return chosen

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def _load_metadata(self, program_id: str) -> Optional[ProgramMetadata]:
        cached = self._metadata.get(program_id)
        if cached is not None:
            return cached

        key = _METADATA_KEY_PREFIX + program_id
        event, owner = self._coordinator.acquire(key)
        if not owner:
            await self._coordinator.wait(event, self._config.download_wait_timeout)
            cached = self._metadata.get(program_id)
            if cached is None:
                self._raise_if_paused()
            return cached

        try:
            logger.info("Metadata for %s not cached; fetching", program_id)
            fetched = await self._with_token(
                lambda token: self._client.fetch_metadata(program_id, token),
                f"fetching metadata for {program_id}",
            )
            if fetched is not None:
                self._metadata.put(fetched)
        finally:
            self._coordinator.release(key)

        if fetched is None:
            logger.warning("Schedules Direct returned no metadata for %s", program_id)
            return None
        return self._metadata.get(program_id) or fetched

    async def _with_token(self, call: Callable[[str], Awaitable[T]], context: str) -> T:
        """Run ``call(token)``, refreshing the token once if it is rejected.

        Throttling reported by the call (or by the login it needed) engages
        the global gate before it propagates.
        """
        self._raise_if_paused()
        try:
            token = await self._tokens.get_token()
            try:
                return await call(token)
            except UpstreamAuthError:
                logger.warning("Upstream rejected token %s; forcing refresh", context)
                token = await self._tokens.force_refresh_limited()
                return await call(token)
        except UpstreamThrottledError as e:
            logger.warning("Upstream throttled %s: %s", context, e.message)
            self._engage_gate(e, context)

    # ------------------------------------------------------------------
    # Download pipeline
    # ------------------------------------------------------------------

    def _raise_if_paused(self) -> None:
        blocked, remaining = self._gate.should_block()
        if blocked:
            raise UpstreamThrottledError(
                "Upstream paused",
                retry_after=retry_after_seconds(remaining),
                paused_until=self._gate.paused_until,
            )

    def _usable_file(self, path: Path, honor_ttl: bool) -> bool:
        return path.is_file() and not (honor_ttl and self._is_expired(path))

    async def _download(self, image_id: str, uri: str, *, honor_ttl: bool) -> tuple[Path, str]:
        """Make sure ``image_id`` is on disk, downloading at most once concurrently.

        Returns
        -------
        tuple[Path, str]
            Path of the cached file and the ``X-Cache`` status to report.
        """
        path = self._image_path(image_id)
        if self._usable_file(path, honor_ttl):
            return path, "HIT"

        event, owner = self._coordinator.acquire(image_id)
        if not owner:
            logger.debug("Waiting for in-flight download of %s", image_id)
            await self._coordinator.wait(event, self._config.download_wait_timeout)
            if self._usable_file(path, honor_ttl):
                return path, "HIT"
            self._raise_if_paused()
            raise ImageFetchError("Concurrent download did not produce a file", image_id=image_id)

        try:
            if self._usable_file(path, honor_ttl):
                return path, "HIT"
            await self._fetch_to_disk(image_id, uri, path)
        finally:
            self._coordinator.release(image_id)
        return path, "MISS"

    async def _fetch_once(self, uri: str, token: str) -> httpx.Response:
        self.upstream_image_fetches += 1
        url = build_fetch_url(uri, token, self._config.sd_base_url)
        return await self._client.fetch_image(url)

    async def _fetch_to_disk(self, image_id: str, uri: str, path: Path) -> None:
        self._raise_if_paused()
        logger.info("Downloading poster %s from Schedules Direct", image_id)

        token = await self._tokens.get_token()
        response = await self._fetch_once(uri, token)
        if _is_auth_rejection(response):
            logger.warning("Token rejected fetching %s; forcing refresh and retrying once", image_id)
            token = await self._tokens.force_refresh_limited()
            response = await self._fetch_once(uri, token)
            if _is_auth_rejection(response):
                raise UpstreamAuthError(
                    f"Token rejected twice fetching image {image_id}",
                    code=json_code(response.content) or 0,
                )

        self._check_throttling(response, image_id)

        body = response.content
        if response.status_code != 200:
            raise ImageFetchError(
                f"Unexpected status {response.status_code} fetching image {image_id}",
                image_id=image_id,
                status_code=response.status_code,
            )

        if detect_image_type(body) is None:
            if is_quota_payload(body):
                self._pause_until_reset(f"fetching image {image_id}")
            raise NonImagePayloadError(
                f"Upstream returned a non-image payload for {image_id}",
                image_id=image_id,
                content_type=response.headers.get("content-type", ""),
            )

        if len(body) > self._config.max_image_bytes:
            raise ImageFetchError(
                f"Image {image_id} too large ({len(body)} bytes)",
                image_id=image_id,
                status_code=response.status_code,
            )

        try:
            atomic_write_bytes(path, body)
        except OSError as e:
            logger.error("Disk error writing cached poster %s", path, exc_info=True)
            raise ImageFetchError(f"Could not store image {image_id}", image_id=image_id) from e
        logger.info("Cached poster %s (%d bytes)", path, len(body))

    def _check_throttling(self, response: httpx.Response, image_id: str) -> None:
        """Engage the global gate for 429s and quota responses."""
        context = f"fetching image {image_id}"
        if response.status_code == 429:
            self._pause_for_rate_limit(self._retry_after_from(response), context)

        if response.status_code != 200 and detect_image_type(response.content) is None:
            if is_quota_payload(response.content):
                self._pause_until_reset(context)

    def _engage_gate(self, error: UpstreamThrottledError, context: str) -> NoReturn:
        """Pause upstream traffic for a throttling signal raised by the client."""
        if error.paused_until is not None:
            raise error
        if error.code in QUOTA_CODES:
            self._pause_until_reset(context)
        self._pause_for_rate_limit(error.retry_after, context)

    def _pause_for_rate_limit(self, retry_after: Optional[int], context: str) -> NoReturn:
        seconds = retry_after or self._config.throttle_pause_seconds
        self._gate.pause_for(seconds, f"HTTP 429 {context}")
        self._raise_if_paused()
        raise UpstreamThrottledError("Upstream rate limited", retry_after=int(seconds))

    def _pause_until_reset(self, context: str) -> NoReturn:
        until = next_utc_midnight_plus(self._clock(), MIDNIGHT_GRACE_MINUTES)
        self._gate.set_pause_until(until, f"download quota reached ({context})")
        self._raise_if_paused()
        raise UpstreamThrottledError(
            "Download quota reached",
            retry_after=retry_after_seconds(until - self._clock()),
            paused_until=until,
        )

    def _retry_after_from(self, response: httpx.Response) -> Optional[int]:
        return parse_retry_after(response.headers.get("retry-after"), self._clock())

    # ------------------------------------------------------------------
    # Maintenance helpers
    # ------------------------------------------------------------------

    async def resolve(self, program_id: str) -> Optional[ImageCandidate]:
        """Run metadata lookup and selection without downloading anything."""
        program_id = normalize_program_id(program_id)
        return await self._choose_candidate(program_id)

    def get_stats(self) -> CacheStats:
        """Collect statistics about the poster cache."""
        image_count = 0
        total_size = 0
        oldest: Optional[float] = None
        newest: Optional[float] = None
        image_dir = self._config.image_dir
        if image_dir.is_dir():
            for path in image_dir.glob(f"*{_IMAGE_SUFFIX}"):
                try:
                    stat = path.stat()
                except OSError:
                    continue
                image_count += 1
                total_size += stat.st_size
                oldest = stat.st_mtime if oldest is None else min(oldest, stat.st_mtime)
                newest = stat.st_mtime if newest is None else max(newest, stat.st_mtime)

        return CacheStats(
            image_count=image_count,
            total_size_bytes=total_size,
            indexed_programs=len(self._index),
            pinned_images=len(self._overrides.pinned_image_ids()),
            blocked_images=len(self._blocklist.entries()),
            oldest_file=datetime.fromtimestamp(oldest, tz=timezone.utc) if oldest else None,
            newest_file=datetime.fromtimestamp(newest, tz=timezone.utc) if newest else None,
        )
