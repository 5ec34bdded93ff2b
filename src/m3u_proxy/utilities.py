import asyncio
import os
import logging
from collections import namedtuple
from urllib.parse import quote, urljoin, urlsplit

import aiohttp

from m3u_proxy.errors import FetchError

logger = logging.getLogger(__name__)

APP = "m3u_proxy"
PROXY_HOST = "127.0.0.1"
PROXY_PATH = "/proxy"

ABSOLUTE_PREFIXES = ("http://", "https://")
MANIFEST_CONTENT_TYPES = ("mpegurl", "m3u")

FetchResult = namedtuple("FetchResult", ["body", "final_url"])


def is_absolute_url(url):
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc)


def resolve_url(base, raw):
    """
    Resolve a possibly relative reference against an absolute base URL.
    Absolute http(s) references come back untouched, and anything that
    can't be joined is returned as-is so one bad line never breaks a playlist.
    """
    if raw.startswith(ABSOLUTE_PREFIXES):
        return raw

    if not is_absolute_url(base):
        return raw

    try:
        return urljoin(base, raw)
    except ValueError:
        return raw


def build_proxy_url(url, port, host=PROXY_HOST):
    return f"http://{host}:{port}{PROXY_PATH}?url={quote(url, safe='')}"


def _looks_like_playlist(url):
    url = (url or "").lower()
    return url.endswith(".m3u8") or ".m3u8?" in url or url.endswith(".m3u")


def is_manifest(requested_url, final_url, content_type):
    """Decide whether a response is a rewritable playlist or opaque media."""
    if _looks_like_playlist(requested_url) or _looks_like_playlist(final_url):
        return True

    content_type = (content_type or "").lower()
    return any(marker in content_type for marker in MANIFEST_CONTENT_TYPES)


def get_data_dir():
    override = os.getenv("M3U_PROXY_DATA_DIR")
    if override:
        return override

    appdata_local = os.getenv("LOCALAPPDATA")
    if appdata_local:
        return os.path.join(appdata_local, APP)

    xdg_data_home = os.getenv("XDG_DATA_HOME") or os.path.join(os.path.expanduser("~"), ".local", "share")
    return os.path.join(xdg_data_home, APP)


async def fetch_url(url, session: aiohttp.ClientSession = None) -> FetchResult:
    """
    Fetch a URL and return its full body as text along with the final URL
    reached after redirects. Raises FetchError with a readable message.
    """
    own_session = False
    if session is None:
        session = aiohttp.ClientSession()
        own_session = True

    try:
        logger.debug(f"fetching {url}")
        try:
            async with session.get(url) as res:
                if not 200 <= res.status < 300:
                    raise FetchError(f"Failed to fetch: {res.status} {res.reason or 'Unknown'}")
                try:
                    body = await res.read()
                except aiohttp.ClientError as err:
                    raise FetchError(f"Failed to read response: {err}") from err
                final_url = str(res.url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise FetchError(f"Network error: {err}") from err

    finally:
        if own_session:
            await session.close()

    return FetchResult(body.decode("utf-8", errors="replace"), final_url)
