import argparse
import mimetypes
import os
import random
import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import quote

import aiofiles
import aiofiles.os
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, RedirectResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from random_image_server import config
from random_image_server.app.services.access_policy import (
    build_cors_headers,
    is_referer_allowed,
    resolve_directory,
)
from random_image_server.app.services.image_selector import ImageSelector
from random_image_server.config import ServerConfig, load_config
from random_image_server.errors import ConfigError, FileUnreadable, ForbiddenReferer
from random_image_server.logger_config import setup_logger

# Logger setup
logger = setup_logger()

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Expires": "0",
    "Pragma": "no-cache",
    "Surrogate-Control": "no-store",
}


def build_image_selector(server_config: ServerConfig) -> ImageSelector:
    rng = random.Random(server_config.random_seed) if server_config.random_seed is not None else random.Random()
    return ImageSelector(rng=rng, avoid_repeat=server_config.avoid_repeat)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # main() loads the config before binding; this covers `uvicorn random_image_server.main:app`
    if getattr(app.state, "server_config", None) is None:
        app.state.server_config = load_config()
    if getattr(app.state, "image_selector", None) is None:
        app.state.image_selector = build_image_selector(app.state.server_config)
    yield


# Create FastAPI app with lifespan
app = FastAPI(title="Random Image Server", lifespan=lifespan)


@app.exception_handler(StarletteHTTPException)
async def plain_text_error_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as plain text, keeping any headers attached to them."""
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    """Log anything that escaped the routes and answer with a plain-text 500."""
    logger.error(f"Unexpected error handling {request.method} {request.url.path}: {str(exc)}", exc_info=exc)

    headers = {}
    server_config = getattr(request.app.state, "server_config", None)
    if server_config is not None and request.url.path == "/":
        headers = build_cors_headers(server_config, request.headers.get("origin"))
    return PlainTextResponse("Internal Server Error", status_code=500, headers=headers)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    if not getattr(request.app.state, "verbose", False):
        return await call_next(request)

    start = time.perf_counter()
    response = await call_next(request)
    body_iterator = response.body_iterator

    # The log line is written once the body is sent, so streamed files are timed in full
    async def timed_body():
        sent = 0
        try:
            async for chunk in body_iterator:
                sent += len(chunk)
                yield chunk
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            client = request.client.host if request.client else "-"
            selected = getattr(request.state, "selected_file", "-")
            logger.debug(
                f"{client} {request.method} {request.url.path} -> {response.status_code} "
                f"file={selected} bytes={sent} in {elapsed_ms:.2f}ms"
            )

    response.body_iterator = timed_body()
    return response


def build_redirect_url(prefix: str, directory: str, file_name: str) -> str:
    """Join the public URL prefix with the normalised path of the selected file."""
    relative = Path(os.path.normpath(os.path.join(directory, file_name))).as_posix().lstrip("/")
    # Names that aren't valid UTF-8 are quoted from their raw filesystem bytes
    return f"{prefix.rstrip('/')}/{quote(os.fsencode(relative))}"


async def stream_file(path: str, headers: Optional[Dict[str, str]] = None) -> StreamingResponse:
    """Open `path` and stream it back in chunks.

    The file is opened before the response starts so a failure still
    produces a 500 instead of a truncated body.
    """
    headers = dict(headers or {})
    try:
        stat = await aiofiles.os.stat(path)
        file = await aiofiles.open(path, 'rb')
    except OSError as e:
        logger.error(f"Error opening file {path}: {str(e)}", exc_info=True)
        raise FileUnreadable(path, headers=headers)

    async def file_iterator():
        try:
            while chunk := await file.read(config.CHUNK_SIZE):
                yield chunk
        finally:
            await file.close()

    content_type, _ = mimetypes.guess_type(path)
    headers["Content-Length"] = str(stat.st_size)

    return StreamingResponse(
        file_iterator(),
        media_type=content_type or "application/octet-stream",
        headers=headers
    )


@app.get("/favicon.ico")
async def get_favicon(request: Request):
    """Serve the configured favicon as-is."""
    server_config = request.app.state.server_config
    return await stream_file(server_config.favicon_path)


@app.get("/")
async def get_random_image(request: Request, source: Optional[str] = None):
    """Serve, or redirect to, a random image from the effective directory."""
    server_config = request.app.state.server_config
    image_selector = request.app.state.image_selector

    directory = resolve_directory(server_config, source)
    cors_headers = build_cors_headers(server_config, request.headers.get("origin"))

    if server_config.referer_check_enabled:
        referer = request.headers.get("referer")
        if not is_referer_allowed(referer, server_config.allowed_referers):
            logger.info(f"Rejected request with referer: {referer!r}")
            raise ForbiddenReferer(headers=cors_headers)

    candidates = await image_selector.list_candidates(
        directory,
        server_config.allowed_extensions,
        server_config.disable_file_type_check,
        headers=cors_headers,
    )
    selected = await image_selector.choose(directory, candidates)
    request.state.selected_file = selected
    file_path = os.path.join(directory, selected)

    headers = {**cors_headers, **NO_CACHE_HEADERS}

    if server_config.mode == config.MODE_REDIRECT:
        url = build_redirect_url(server_config.redirect_url_prefix, directory, selected)
        logger.debug(f"Redirecting to {url}")
        return RedirectResponse(url, status_code=302, headers=headers)

    logger.debug(f"Serving {file_path}")
    return await stream_file(file_path, headers)


def main():
    parser = argparse.ArgumentParser(description="Serve a random image from a directory")
    parser.add_argument('-v', '--verbose', action='store_true', help='Log every request in detail')
    args = parser.parse_args()

    setup_logger(verbose=args.verbose)

    try:
        server_config = load_config()
    except ConfigError as e:
        logger.critical(f"Failed to load configuration: {e}")
        sys.exit(1)

    app.state.server_config = server_config
    app.state.image_selector = build_image_selector(server_config)
    app.state.verbose = args.verbose

    logger.info("Starting Random Image Server...")
    logger.info(f"Image directory: {server_config.image_dir}")
    logger.info(f"Mode: {server_config.mode}")
    logger.info(f"Listening on port {server_config.port}")
    uvicorn.run(app, host=config.HOST, port=server_config.port_number)


if __name__ == "__main__":
    main()
