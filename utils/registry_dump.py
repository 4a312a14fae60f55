from __future__ import annotations

import os
from pathlib import Path

import requests

from config import get_setting
from logging_utils import get_logger
from support.source_ingest_base import RegistryImportError

logger = get_logger(__name__)

_CHUNK_SIZE = 1024 * 1024


class DumpDownloadError(RegistryImportError):
    pass


def _user_agent() -> str:
    ua = get_setting("REGISTRY_USER_AGENT")
    if isinstance(ua, str) and ua.strip():
        return ua.strip()
    return "company_registry (contact: unset)"


def download_dump(
    dest: Path | str,
    *,
    url: str | None = None,
    session: requests.Session | None = None,
    max_redirects: int | None = None,
    timeout_seconds: float | None = None,
) -> Path:
    """Stream the gzip-compressed registry dump to ``dest``.

    Redirects are followed up to ``max_redirects`` (``DUMP_MAX_REDIRECTS``);
    one more fails the download. There is no resume: any failure removes the
    partial file and raises ``DumpDownloadError``.
    """

    url = url or str(get_setting("DUMP_URL"))
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)

    s = session or requests.Session()
    s.max_redirects = int(
        max_redirects if max_redirects is not None else get_setting("DUMP_MAX_REDIRECTS")
    )
    timeout = float(timeout_seconds or get_setting("DUMP_DOWNLOAD_TIMEOUT"))

    logger.info("Downloading registry dump | url=%s dest=%s", url, dest)
    try:
        with s.get(
            url,
            headers={"User-Agent": _user_agent()},
            stream=True,
            timeout=timeout,
            allow_redirects=True,
        ) as resp:
            for hop in resp.history:
                logger.info(
                    "Dump redirect | status=%s location=%s",
                    hop.status_code,
                    hop.headers.get("Location"),
                )
            if not 200 <= resp.status_code < 300:
                raise DumpDownloadError(
                    f"Dump download failed status={resp.status_code} url={resp.url}"
                )

            total = int(resp.headers.get("Content-Length") or 0)
            downloaded = 0
            last_logged_pct = 0
            with dest.open("wb") as fh:
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    if not chunk:
                        continue
                    fh.write(chunk)
                    downloaded += len(chunk)
                    if total:
                        pct = downloaded * 100 // total
                        if pct >= last_logged_pct + 10:
                            logger.info("Dump download %s%% (%s bytes)", pct, downloaded)
                            last_logged_pct = pct
    except requests.TooManyRedirects as e:
        _remove_partial(dest)
        raise DumpDownloadError(
            f"Too many redirects (>{s.max_redirects}) fetching {url}"
        ) from e
    except requests.RequestException as e:
        _remove_partial(dest)
        raise DumpDownloadError(f"Dump download failed url={url}: {e}") from e
    except DumpDownloadError:
        _remove_partial(dest)
        raise

    logger.info("Dump download complete | bytes=%s", downloaded)
    return dest


def _remove_partial(path: Path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
