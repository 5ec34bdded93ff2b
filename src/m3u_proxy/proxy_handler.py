import logging
import re

from m3u_proxy.utilities import build_proxy_url, is_absolute_url, resolve_url

logger = logging.getLogger(__name__)

DIRECTIVE_MARKER = "#"

# only the first URI attribute on a line is rewritten
URI_ATTRIBUTE = re.compile(r'URI="([^"]*)"')


def _rewrite_directive(line, base_url, proxy_port):
    match = URI_ATTRIBUTE.search(line)
    if not match:
        return line

    target = resolve_url(base_url, match.group(1))
    logger.debug(f"rewriting URI attribute {match.group(1)} -> {target}")
    start, end = match.span(1)
    return line[:start] + build_proxy_url(target, proxy_port) + line[end:]


def rewrite_manifest(playlist_content, final_url, proxy_port):
    """
    Rewrite every reference in a playlist so it points back at the proxy.

    Relative references are resolved against final_url, which should be the
    URL the playlist was actually served from after redirects. Directive
    lines keep every byte except the value of their first URI="..."
    attribute. If final_url isn't absolute the playlist comes back unchanged.
    """
    if not is_absolute_url(final_url):
        logger.warning(f"cannot rewrite playlist with base {final_url!r}, passing through")
        return playlist_content

    lines = playlist_content.split('\n')
    rewritten = []

    for line in lines:
        line = line.rstrip('\r')
        stripped = line.strip()

        if not stripped or stripped.startswith(DIRECTIVE_MARKER):
            rewritten.append(_rewrite_directive(line, final_url, proxy_port))
        else:
            # This is a URL line
            target = resolve_url(final_url, stripped)
            rewritten.append(build_proxy_url(target, proxy_port))

    return '\n'.join(rewritten)
