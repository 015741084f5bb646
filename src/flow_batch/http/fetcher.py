"""Streaming artifact downloader with atomic writes."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; FlowBatch/0.1)"
CHUNK_SIZE = 64 * 1024


class DownloadError(RuntimeError):
    """One fetch attempt failed: non-2xx response or transport error."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class FetchedArtifact:
    """Result of a successful artifact fetch."""

    url: str
    path: Path
    status_code: int
    bytes_written: int


class ArtifactFetcher:
    """HTTP client wrapper that streams one URL into one target file.

    Redirects are followed and never count as failures. The body is written to
    a sibling temporary file and renamed into place only when complete, so an
    interrupted write never leaves a partial file at the target path.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        base_headers = {"User-Agent": user_agent}
        if headers:
            base_headers.update(headers)
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=base_headers,
            transport=transport,
            follow_redirects=True,
        )

    def fetch_to(self, url: str, target: Path) -> FetchedArtifact:
        """Download `url` into `target`, raising `DownloadError` on failure.

        Local write errors (missing permissions, a full disk) fail the attempt
        the same way a bad response does.
        """

        tmp = target.with_name(f".{target.name}.part-{os.getpid()}")
        written = 0
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with self._client.stream("GET", url) as response:
                if not response.is_success:
                    raise DownloadError(
                        f"HTTP {response.status_code}",
                        status_code=response.status_code,
                    )
                with tmp.open("wb") as handle:
                    for chunk in response.iter_bytes(CHUNK_SIZE):
                        handle.write(chunk)
                        written += len(chunk)
                status_code = response.status_code
            os.replace(tmp, target)
        except httpx.TimeoutException as error:
            _discard(tmp)
            raise DownloadError("timeout") from error
        except httpx.HTTPError as error:
            _discard(tmp)
            raise DownloadError(str(error) or type(error).__name__) from error
        except OSError as error:
            _discard(tmp)
            raise DownloadError(f"write failed: {error}") from error
        except DownloadError:
            _discard(tmp)
            raise

        logger.debug("Fetched %s -> %s (%d bytes)", url, target, written)
        return FetchedArtifact(url=url, path=target, status_code=status_code, bytes_written=written)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ArtifactFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _discard(tmp: Path) -> None:
    try:
        tmp.unlink(missing_ok=True)
    except OSError:
        logger.warning("Could not remove partial download %s", tmp)
