"""
Minimal CPAN mirror synchronisation.

Keeps a local mirror of the latest release archives in step with a remote
CPAN mirror, in the manner of CPAN::Mini:

1. Fetch the index files (``01mailrc``, ``02packages.details``, ``03modlist``).
2. Download every archive listed in ``02packages.details`` that is missing
   locally.
3. Remove local archives the index no longer lists, unless ``skip_cleanup``.

Transient network failures and overload responses are retried with
exponential backoff; a mirror that keeps failing trips a circuit breaker for
the rest of the run.
"""

import gzip
import logging
import os
import time
from pathlib import Path
from urllib.parse import urlsplit

import httpx

from cpanmeta_generator.core.resilience import CircuitBreaker, ExponentialBackoff
from cpanmeta_generator.core.visitor import is_archive

logger = logging.getLogger(__name__)


PACKAGES_INDEX = "modules/02packages.details.txt.gz"

INDEX_FILES = (
    "authors/01mailrc.txt.gz",
    PACKAGES_INDEX,
    "modules/03modlist.data.gz",
)


class MirrorError(RuntimeError):
    """The mirror could not be brought up to date."""


def parse_packages_index(data: bytes) -> set[str]:
    """
    Archive paths listed in a gzipped ``02packages.details.txt``.

    The file is a header block, a blank line, then one
    ``Module::Name  version  A/AU/AUTHOR/Dist-1.0.tar.gz`` line per package.
    Paths are relative to ``authors/id``.
    """
    text = gzip.decompress(data).decode("utf-8", errors="replace")
    _header, _, body = text.replace("\r\n", "\n").partition("\n\n")

    paths = set()
    for line in body.splitlines():
        fields = line.split()
        if len(fields) < 3:
            continue
        path = fields[2]
        if path.startswith("/") or ".." in path.split("/"):
            continue
        paths.add(path)
    return paths


class MirrorSync:
    """
    Updates a local CPAN mirror from a remote one.

    Args:
        remote: Base URL of the remote mirror, e.g. ``https://www.cpan.org/``.
        local: Local mirror root.
        skip_cleanup: Keep local archives the index no longer lists.
        timeout: Per-request timeout in seconds.
        client: Optional preconfigured ``httpx.Client``; not closed by us.
    """

    def __init__(
        self,
        remote: str,
        local: Path | str,
        skip_cleanup: bool = False,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
        backoff: ExponentialBackoff | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ):
        self.remote = remote.rstrip("/") + "/"
        self.local = Path(local)
        self.skip_cleanup = skip_cleanup
        self.timeout = timeout
        self.client = client
        self.backoff = backoff or ExponentialBackoff(base_delay=1.0, max_delay=60.0, max_retries=3)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(failure_threshold=10, timeout=300.0)
        self.host = urlsplit(self.remote).netloc or self.remote
        self.sleep = time.sleep

        self.stats = {"downloaded": 0, "failed": 0, "removed": 0, "bytes": 0}

    # ──────────────────────────────────────────────
    # HTTP Layer
    # ──────────────────────────────────────────────

    def _request(self, client: httpx.Client, path: str, attempt: int = 0) -> httpx.Response | None:
        """GET ``path`` from the remote, retrying network errors and overload responses."""
        if self.circuit_breaker.is_open(self.host):
            return None

        url = self.remote + path
        try:
            resp = client.get(url)
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            if self.backoff.should_retry(attempt):
                delay = self.backoff.calculate_delay(attempt)
                logger.debug(f"GET {url} failed ({type(e).__name__}), retry {attempt + 1} after {delay:.1f}s")
                self.sleep(delay)
                return self._request(client, path, attempt + 1)

            self.circuit_breaker.record_failure(self.host)
            logger.warning(f"GET {url} failed after {attempt + 1} attempts: {e}")
            return None

        if self.backoff.should_retry_status(resp.status_code, attempt):
            delay = self.backoff.calculate_delay(attempt, resp.headers.get("Retry-After"))
            logger.debug(f"GET {url}: HTTP {resp.status_code}, retry {attempt + 1} after {delay:.1f}s")
            self.sleep(delay)
            return self._request(client, path, attempt + 1)

        self.circuit_breaker.record_response(self.host, resp.status_code)
        return resp

    def _fetch(self, client: httpx.Client, path: str, dest: Path) -> bytes | None:
        """Download ``path`` to ``dest`` atomically; None if it failed."""
        resp = self._request(client, path)
        if resp is None or resp.status_code != 200:
            if resp is not None:
                logger.warning(f"GET {self.remote + path}: HTTP {resp.status_code}")
            return None

        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(dest.name + ".part")
        partial.write_bytes(resp.content)
        os.replace(partial, dest)

        self.stats["bytes"] += len(resp.content)
        return resp.content

    # ──────────────────────────────────────────────
    # Sync Steps
    # ──────────────────────────────────────────────

    def _update_indexes(self, client: httpx.Client) -> set[str]:
        packages = None
        for path in INDEX_FILES:
            data = self._fetch(client, path, self.local / path)
            if data is None:
                raise MirrorError(f"Failed to fetch index {path} from {self.remote}")
            if path == PACKAGES_INDEX:
                packages = parse_packages_index(data)

        logger.info(f"[Mirror] Index lists {len(packages)} archives")
        return packages

    def _update_archives(self, client: httpx.Client, archives: set[str]) -> None:
        authors = self.local / "authors" / "id"
        for archive in sorted(archives):
            dest = authors / archive
            if dest.exists():
                continue
            if self.circuit_breaker.is_open(self.host):
                self.stats["failed"] += 1
                continue

            if self._fetch(client, f"authors/id/{archive}", dest) is None:
                self.stats["failed"] += 1
            else:
                self.stats["downloaded"] += 1
                logger.debug(f"[Mirror] Fetched {archive}")

    def _clean(self, archives: set[str]) -> None:
        authors = self.local / "authors" / "id"
        if not authors.is_dir():
            return

        for path in sorted(authors.rglob("*")):
            if not path.is_file() or not is_archive(path):
                continue
            if path.relative_to(authors).as_posix() in archives:
                continue
            path.unlink()
            self.stats["removed"] += 1
            logger.debug(f"[Mirror] Removed stale {path}")

    def update(self) -> Path:
        """
        Bring the local mirror up to date.

        Returns:
            The local mirror root.

        Raises:
            MirrorError: If the index files cannot be fetched.
        """
        self.local.mkdir(parents=True, exist_ok=True)
        logger.info(f"[Mirror] Updating {self.local} from {self.remote}")

        if self.client is not None:
            self._sync(self.client)
        else:
            with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                self._sync(client)

        logger.info(
            f"[Mirror] Done: {self.stats['downloaded']} downloaded, "
            f"{self.stats['failed']} failed, {self.stats['removed']} removed"
        )
        return self.local

    def _sync(self, client: httpx.Client) -> None:
        archives = self._update_indexes(client)
        self._update_archives(client, archives)
        if not self.skip_cleanup:
            self._clean(archives)
