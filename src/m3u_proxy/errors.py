class M3UProxyError(Exception):
    """Base class for errors raised by m3u_proxy helpers."""


class FetchError(M3UProxyError):
    pass


class PlaylistError(M3UProxyError):
    pass


class ConfigError(M3UProxyError):
    pass
