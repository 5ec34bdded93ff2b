import logging
import os
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote, urljoin, urlsplit

import aiohttp

from m3u_proxy.errors import PlaylistError
from m3u_proxy.utilities import fetch_url

logger = logging.getLogger(__name__)

LOGO_ATTRIBUTE = re.compile(r'tvg-logo="([^"]*)"', re.IGNORECASE)
GROUP_ATTRIBUTE = re.compile(r'group-title="([^"]*)"', re.IGNORECASE)
LINE_BREAK = re.compile(r'\r?\n')


@dataclass
class Channel:
    name: str
    url: str = ""
    logo: Optional[str] = None
    group: Optional[str] = None


def _resolve(url, base_url):
    # looser than utilities.resolve_url on purpose: a non-absolute base is still joined, as the channel list loader does
    if not base_url:
        return url
    try:
        return urljoin(base_url, url)
    except ValueError:
        return url


def _name_comma_index(line):
    # the display name follows the last comma that isn't inside a quoted attribute
    index = -1
    in_quotes = False
    for i, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == ',' and not in_quotes:
            index = i
    return index


def parse_extinf(line):
    """
    Pull channel metadata out of an #EXTINF line, e.g.
    #EXTINF:-1 tvg-logo="http://x/logo.png" group-title="News",Channel Name
    """
    channel = Channel(name="Unknown")

    comma = _name_comma_index(line)
    if comma != -1:
        channel.name = line[comma + 1:].strip() or "Unknown"

    m = LOGO_ATTRIBUTE.search(line)
    if m and m.group(1):
        channel.logo = m.group(1)

    m = GROUP_ATTRIBUTE.search(line)
    if m and m.group(1):
        channel.group = m.group(1)

    return channel


def name_from_url(url):
    try:
        filename = urlsplit(url).path.rsplit('/', 1)[-1]
    except ValueError:
        return url
    if not filename:
        return url
    return unquote(os.path.splitext(filename)[0]) or url


def parse_m3u(content, base_url=""):
    """Parse an M3U channel list into Channel entries, in file order."""
    channels = []
    current = None

    for line in LINE_BREAK.split(content):
        line = line.strip()

        if line.startswith("#EXTINF:"):
            current = parse_extinf(line)

        elif line and not line.startswith('#'):
            url = _resolve(line, base_url)
            if current:
                current.url = url
                channels.append(current)
                current = None
            else:
                channels.append(Channel(name=name_from_url(url), url=url))

    return channels


async def fetch_and_parse_m3u(url, session: aiohttp.ClientSession = None):
    result = await fetch_url(url, session=session)
    channels = parse_m3u(result.body, result.final_url)

    if not channels:
        raise PlaylistError("No channels found in playlist. Make sure the URL points to a valid M3U file.")

    logger.info(f"found {len(channels)} channels in {url}")
    return channels
