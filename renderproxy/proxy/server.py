"""
renderproxy HTTP server.

Routes:
  /proxy?url=<url>[&mode=html|screenshot|pdf]  -> classify, then render or fetch
  /resource?url=<url>                          -> direct sub-resource fetch
  /proxy-simple?url=<url>                      -> plain fetch, no rendering
  /health                                      -> liveness + session state
  /                                            -> usage

The render session is owned by the RequestDispatcher stored on the app and
is closed from the cleanup hook, which runs once SIGINT/SIGTERM stops the
server.
"""

import asyncio
import functools
import signal
import uuid
from collections.abc import Awaitable, Callable

from aiohttp import web

from renderproxy.crawler.browser_session import PlaywrightLauncher, RenderSessionManager
from renderproxy.crawler.fetch_result import FetchResult
from renderproxy.crawler.http_fetcher import DirectFetcher
from renderproxy.crawler.interceptor import RequestInterceptor
from renderproxy.crawler.navigation import NavigationStrategy
from renderproxy.crawler.resource_classifier import ResourceClassifier
from renderproxy.proxy.dispatcher import ProxyRequest, RequestDispatcher
from renderproxy.proxy.errors import ProxyError, ProxyErrorCode
from renderproxy.utils.config import Settings, get_settings
from renderproxy.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

DISPATCHER_KEY = web.AppKey("dispatcher", RequestDispatcher)
SETTINGS_KEY = web.AppKey("settings", Settings)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "*",
    "Access-Control-Expose-Headers": "X-Proxied-URL",
}


def proxy_origin(request: web.Request) -> str:
    """Origin the client reached us at, unless overridden in settings."""
    configured = request.app[SETTINGS_KEY].server.public_origin
    if configured:
        return configured.rstrip("/")
    return f"{request.scheme}://{request.host}"


def to_response(result: FetchResult) -> web.Response:
    """Convert a FetchResult into an aiohttp response."""
    headers = dict(result.headers)
    headers["Content-Type"] = result.content_type
    body = result.body if result.status not in (204, 304) else None
    return web.Response(status=result.status, body=body, headers=headers)


@web.middleware
async def request_context_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Bind a request id to every log line of the request."""
    with LogContext(request_id=uuid.uuid4().hex[:12], path=request.path):
        return await handler(request)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Render ProxyError (and anything unexpected) as JSON."""
    try:
        return await handler(request)
    except ProxyError as e:
        log = logger.warning if e.status < 500 else logger.error
        log(
            "Proxy request failed",
            error_code=e.code.value,
            status=e.status,
            url=e.url,
            message=e.message,
        )
        return web.json_response(e.to_dict(), status=e.status)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.exception("Unhandled proxy error", error=str(e))
        return web.json_response(
            {
                "error": "Proxy error",
                "message": str(e) or type(e).__name__,
                "error_code": ProxyErrorCode.INTERNAL_ERROR.value,
            },
            status=500,
        )


@web.middleware
async def cors_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Answer preflights and add permissive CORS headers."""
    if request.method == "OPTIONS":
        return web.Response(status=204, headers=_CORS_HEADERS)
    response = await handler(request)
    for key, value in _CORS_HEADERS.items():
        response.headers.setdefault(key, value)
    return response


async def handle_proxy(request: web.Request) -> web.Response:
    """Primary entry point: render or fetch the target URL."""
    dispatcher = request.app[DISPATCHER_KEY]

    body = await request.read() if request.can_read_body else None
    result = await dispatcher.dispatch(
        ProxyRequest(
            raw_url=request.query.get("url"),
            proxy_origin=proxy_origin(request),
            method=request.method,
            body=body or None,
            body_content_type=request.headers.get("Content-Type"),
            mode=request.query.get("mode"),
        )
    )
    return to_response(result)


async def handle_resource(request: web.Request) -> web.Response:
    """Direct passthrough of a single sub-resource."""
    result = await request.app[DISPATCHER_KEY].fetch_resource(request.query.get("url"))
    return to_response(result)


async def handle_simple(request: web.Request) -> web.Response:
    """Plain fetch without the rendering engine."""
    result = await request.app[DISPATCHER_KEY].fetch_simple(request.query.get("url"))
    return to_response(result)


async def handle_health(request: web.Request) -> web.Response:
    """Health check endpoint."""
    health = request.app[DISPATCHER_KEY].health()
    logger.debug("health_check", **health)
    return web.json_response(health)


async def handle_index(request: web.Request) -> web.Response:
    """Usage summary."""
    origin = proxy_origin(request)
    return web.json_response(
        {
            "service": request.app[SETTINGS_KEY].general.project_name,
            "endpoints": {
                "proxy": f"{origin}/proxy?url=YOUR_URL",
                "screenshot": f"{origin}/proxy?url=YOUR_URL&mode=screenshot",
                "pdf": f"{origin}/proxy?url=YOUR_URL&mode=pdf",
                "resource": f"{origin}/resource?url=YOUR_URL",
                "simple": f"{origin}/proxy-simple?url=YOUR_URL",
                "health": f"{origin}/health",
            },
        }
    )


def build_dispatcher(settings: Settings) -> RequestDispatcher:
    """Wire the production collaborators from settings."""
    classifier = ResourceClassifier(settings.classifier)
    launcher = PlaywrightLauncher(settings.browser, RequestInterceptor(settings.interceptor))
    return RequestDispatcher(
        RenderSessionManager(launcher),
        DirectFetcher(settings.fetcher, classifier=classifier),
        NavigationStrategy(settings.navigation),
        classifier=classifier,
    )


async def _close_dispatcher(app: web.Application) -> None:
    logger.info("Closing render session and HTTP client")
    await app[DISPATCHER_KEY].close()


def create_app(
    settings: Settings | None = None,
    dispatcher: RequestDispatcher | None = None,
) -> web.Application:
    """Create aiohttp application."""
    settings = settings or get_settings()

    app = web.Application(
        middlewares=[request_context_middleware, cors_middleware, error_middleware]
    )
    app[SETTINGS_KEY] = settings
    app[DISPATCHER_KEY] = dispatcher or build_dispatcher(settings)
    app.on_cleanup.append(_close_dispatcher)

    app.router.add_route("GET", "/proxy", handle_proxy)
    app.router.add_route("POST", "/proxy", handle_proxy)
    app.router.add_get("/resource", handle_resource)
    app.router.add_get("/proxy-simple", handle_simple)
    app.router.add_get("/health", handle_health)
    app.router.add_get("/", handle_index)

    return app


async def main(settings: Settings | None = None) -> None:
    """Run the proxy server until SIGINT/SIGTERM."""
    settings = settings or get_settings()
    host, port = settings.server.host, settings.server.port

    logger.info(
        "Starting render proxy server",
        host=host,
        port=port,
        profile=settings.browser.profile,
    )

    app = create_app(settings)
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"Proxy server running on http://{host}:{port}")
    logger.info(f"Proxy endpoint: http://{host}:{port}/proxy?url=YOUR_URL")

    stop_event = asyncio.Event()

    def handle_signal(sig: int) -> None:
        logger.info("Received shutdown signal", signal=sig)
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, functools.partial(handle_signal, sig))

    await stop_event.wait()

    logger.info("Shutting down proxy server")
    await runner.cleanup()
