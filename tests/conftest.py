"""Shared fixtures: an in-process origin server and a proxy client in front of it."""
from __future__ import annotations

import asyncio

import pytest
from aiohttp import web

from m3u_proxy.web_server import WebServer

SEGMENT_BYTES = bytes(range(256)) * 1200

MASTER_PLAYLIST = (
    "#EXTM3U\n"
    "#EXT-X-VERSION:7\n"
    '#EXT-X-MAP:URI="init.mp4"\n'
    "#EXTINF:6.0,\n"
    "chunk1.ts\n"
    "#EXTINF:6.0,\n"
    "https://other.example.com/seg.ts\n"
)

CHANNEL_LIST = (
    "#EXTM3U\n"
    '#EXTINF:-1 tvg-logo="logos/news.png" group-title="News",World News\n'
    "streams/news.m3u8\n"
    "http://tv.example.com/sports.m3u8\n"
)


def build_origin_app() -> web.Application:
    routes = web.RouteTableDef()

    @routes.get("/live/master.m3u8")
    async def master(request: web.Request) -> web.Response:
        return web.Response(text=MASTER_PLAYLIST, content_type="text/plain")

    @routes.get("/redirect/master.m3u8")
    async def redirect(request: web.Request) -> web.Response:
        raise web.HTTPFound("/other/path/index.m3u8")

    @routes.get("/other/path/index.m3u8")
    async def redirected(request: web.Request) -> web.Response:
        return web.Response(text="#EXTM3U\nchunk.ts", content_type="application/vnd.apple.mpegurl")

    @routes.get("/play")
    async def by_content_type(request: web.Request) -> web.Response:
        return web.Response(text="#EXTM3U\nlow/index.m3u8", content_type="application/x-mpegURL")

    @routes.get("/broken.m3u8")
    async def broken_encoding(request: web.Request) -> web.Response:
        return web.Response(body=b"#EXTM3U \xff\xfe\nseg.ts", content_type="application/vnd.apple.mpegurl")

    @routes.get("/missing.m3u8")
    async def missing(request: web.Request) -> web.Response:
        return web.Response(status=404, text="#EXTM3U\nnot-here.ts", content_type="application/vnd.apple.mpegurl")

    @routes.get("/seg.ts")
    async def segment(request: web.Request) -> web.Response:
        return web.Response(body=SEGMENT_BYTES, content_type="video/mp2t")

    @routes.get("/channels.m3u")
    async def channels(request: web.Request) -> web.Response:
        return web.Response(text=CHANNEL_LIST, content_type="audio/x-mpegurl")

    @routes.get("/empty.m3u")
    async def empty(request: web.Request) -> web.Response:
        return web.Response(text="#EXTM3U\n", content_type="audio/x-mpegurl")

    app = web.Application()
    app.add_routes(routes)
    return app


@pytest.fixture()
async def origin(aiohttp_server):
    """A local HLS origin with playlists, redirects and binary segments."""

    return await aiohttp_server(build_origin_app())


@pytest.fixture()
def web_server() -> WebServer:
    return WebServer()


@pytest.fixture()
async def proxy(aiohttp_client, web_server: WebServer):
    """A test client for the proxy app with its bound port published."""

    client = await aiohttp_client(web_server.app)
    web_server.publish_port(client.port)
    return client


@pytest.fixture()
async def truncating_origin():
    """Start raw origins that declare a Content-Length, send less and hang up."""

    servers = []

    async def start(content_type: str, declared: int, body: bytes) -> int:
        async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            await reader.readuntil(b"\r\n\r\n")
            head = (
                "HTTP/1.1 200 OK\r\n"
                f"Content-Type: {content_type}\r\n"
                f"Content-Length: {declared}\r\n"
                "\r\n"
            )
            writer.write(head.encode("ascii") + body)
            await writer.drain()
            writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        servers.append(server)
        return server.sockets[0].getsockname()[1]

    yield start

    for server in servers:
        server.close()
        await server.wait_closed()
