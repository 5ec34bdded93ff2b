import asyncio
import logging
import threading

import aiohttp
from aiohttp import hdrs, web

from m3u_proxy.proxy_handler import rewrite_manifest
from m3u_proxy.utilities import PROXY_HOST, PROXY_PATH, build_proxy_url, is_manifest

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
DEFAULT_CONTENT_TYPE = "application/octet-stream"

CLIENT_SESSION = web.AppKey("client_session", aiohttp.ClientSession)


def cors_headers(content_type=None, allow_all=True):
    headers = {"Access-Control-Allow-Origin": "*"}
    if allow_all:
        headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
        headers["Access-Control-Allow-Headers"] = "*"
    if content_type:
        headers["Content-Type"] = content_type
    return headers


@web.middleware
async def cors_errors(request, handler):
    """Give aiohttp's own error responses (404, 405) the CORS origin header too."""
    try:
        return await handler(request)
    except web.HTTPException as exc:
        exc.headers.setdefault("Access-Control-Allow-Origin", "*")
        raise


def describe(err):
    return str(err) or err.__class__.__name__


class WebServer:
    def __init__(self, host=PROXY_HOST, port=0):

        self.host = host
        self.requested_port = port
        self.app = self.create_app()
        self.runner = None

        self._port = 0
        self._port_lock = threading.Lock()
        self._loop = None
        self._thread = None

    def create_app(self):
        app = web.Application(middlewares=[cors_errors])
        app.cleanup_ctx.append(self._client_session)
        app.router.add_get(PROXY_PATH, self.proxy_request, allow_head=False)
        app.router.add_route(hdrs.METH_OPTIONS, PROXY_PATH, self.serve_options)
        return app

    async def _client_session(self, app):
        # one shared session for connection reuse; no total timeout so live streams can run forever
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None)) as session:
            app[CLIENT_SESSION] = session
            yield

    @property
    def port(self):
        """Bound port, or 0 while the listener isn't up yet."""
        with self._port_lock:
            return self._port

    def publish_port(self, port):
        with self._port_lock:
            if self._port and self._port != port:
                raise RuntimeError(f"proxy port already published as {self._port}")
            self._port = port

    def proxy_url(self, url):
        """Wrap a stream URL so it is fetched through the proxy, if the proxy is up."""
        port = self.port
        if not port:
            return url
        return build_proxy_url(url, port, self.host)

    async def start_async(self):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.requested_port)
        try:
            await site.start()
        except OSError:
            await self.runner.cleanup()
            self.runner = None
            raise

        port = self.runner.addresses[0][1]
        self.publish_port(port)
        logger.info(f"Stream proxy started on http://{self.host}:{port}")
        return port

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None

    async def serve_forever(self):
        await self.start_async()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()

    def start(self):
        asyncio.run(self.serve_forever())

    def start_in_thread(self):
        """Run the proxy on a background event loop and return the bound port."""
        ready = threading.Event()
        failure = []

        def run():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            try:
                loop.run_until_complete(self.start_async())
            except Exception as err:
                failure.append(err)
                loop.close()
                ready.set()
                return

            self._loop = loop
            ready.set()
            try:
                loop.run_forever()
            finally:
                loop.run_until_complete(self.stop())
                loop.close()

        self._thread = threading.Thread(target=run, name="m3u-proxy", daemon=True)
        self._thread.start()
        ready.wait()

        if failure:
            raise failure[0]
        return self.port

    def shutdown(self):
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join()
            self._loop = None
            self._thread = None

    async def proxy_request(self, request: web.Request):
        """Fetch ?url= upstream, rewriting playlists and streaming everything else"""
        target_url = request.query.get("url")
        if not target_url:
            return web.Response(status=400, text="Missing url query parameter",
                                headers=cors_headers(allow_all=False))

        proxy_port = self.port
        session = request.app[CLIENT_SESSION]

        logger.debug(f"Proxying: {target_url}")

        try:
            upstream = await session.get(target_url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            logger.warning(f"Upstream request failed for {target_url}: {describe(err)}")
            return self.serve_gateway_error(f"Proxy error: {describe(err)}")

        async with upstream:
            content_type = upstream.headers.get(hdrs.CONTENT_TYPE, DEFAULT_CONTENT_TYPE)

            # relative references resolve against where we ended up, not where we started
            final_url = str(upstream.url)

            if is_manifest(target_url, final_url, content_type):
                return await self.serve_manifest(upstream, final_url, content_type, proxy_port)

            return await self.serve_stream(request, upstream, content_type)

    async def serve_manifest(self, upstream, final_url, content_type, proxy_port):
        try:
            body = await upstream.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            logger.warning(f"Failed to read playlist {final_url}: {describe(err)}")
            return self.serve_gateway_error(f"Failed to read response: {describe(err)}")

        text = body.decode("utf-8", errors="replace")
        rewritten = rewrite_manifest(text, final_url, proxy_port)

        return web.Response(
            status=upstream.status,
            body=rewritten.encode("utf-8"),
            headers=cors_headers(content_type)
        )

    async def serve_stream(self, request, upstream, content_type):
        response = web.StreamResponse(status=upstream.status, headers=cors_headers(content_type))
        await response.prepare(request)

        try:
            async for chunk in upstream.content.iter_chunked(CHUNK_SIZE):
                await response.write(chunk)
        except ConnectionResetError:
            logger.debug(f"client disconnected while streaming {upstream.url}")
            return response
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            logger.warning(f"Stream from {upstream.url} ended early: {describe(err)}")
            # drop the connection without the chunked terminator so the player sees a short body
            if request.transport is not None:
                request.transport.close()
            return response

        await response.write_eof()
        return response

    def serve_gateway_error(self, message):
        return web.Response(status=502, text=message, headers=cors_headers(allow_all=False))

    async def serve_options(self, request: web.Request):
        headers = cors_headers()
        headers["Access-Control-Max-Age"] = "86400"
        return web.Response(status=200, headers=headers)
