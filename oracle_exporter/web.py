import logging

from aiohttp import web

from .errors import UpstreamError
from .metrics import CONTENT_TYPE, node_up
from .scrape import Scraper, parse_request

logger = logging.getLogger(__name__)

SCRAPER = web.AppKey('scraper', Scraper)


async def create_web_app(scraper: Scraper) -> web.Application:
    app = web.Application()
    app[SCRAPER] = scraper
    app.router.add_get("/health", health_check_handler)
    app.router.add_get("/metrics", metrics_handler)
    app.router.add_get("/metrics/{category}", metrics_handler)
    return app


async def metrics_handler(request: web.Request) -> web.Response:
    scraper = request.app[SCRAPER]
    category = request.match_info.get('category', 'general')
    try:
        scrape_request = parse_request(category, request.query, scraper.prefixes)
    except KeyError:
        raise web.HTTPNotFound(text=f"unknown metrics category: {category}")
    except ValueError as e:
        logger.warning(f"Rejected scrape for /metrics/{category}: {e}")
        raise web.HTTPBadRequest(text=str(e))

    metrics_data = await scraper.handle(scrape_request)
    return web.Response(
        body=metrics_data,
        content_type=CONTENT_TYPE
    )


async def health_check_handler(request: web.Request) -> web.Response:
    scraper = request.app[SCRAPER]
    try:
        height = await scraper.node_client.latest_block_height()
    except UpstreamError as e:
        logger.error(f"Health check failed: {e}")
        node_up.set(0)
        return web.Response(text="unhealthy", status=500)

    logger.debug(f"Health check ok (block: {height})")
    node_up.set(1)
    return web.Response(text="healthy", status=200)
