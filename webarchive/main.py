from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from urllib.parse import urlparse

from fastapi import Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, ConfigDict, Field

from webarchive.config import settings
from webarchive.services.archiver import ArchiveFailed, Archiver
from webarchive.services.processor import viewer_link
from webarchive.services.viewer import ASSET_CACHE_CONTROL, ViewResult, content_type_for, resolve_page
from webarchive.storage.base import ArchiveStore
from webarchive.storage.local import LocalArchiveStore
from webarchive.utils import is_valid_url, normalize_url

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


class ArchiveRequestOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    max_pages: int | None = Field(None, alias="maxPages")
    max_depth: int | None = Field(None, alias="maxDepth")
    same_origin_only: bool | None = Field(None, alias="sameOriginOnly")
    include_assets: bool | None = Field(None, alias="includeAssets")
    concurrency: int | None = None
    request_delay: int | None = Field(None, alias="requestDelay")
    render_js: bool | None = Field(None, alias="renderJs")


class ArchiveRequest(BaseModel):
    url: str
    options: ArchiveRequestOptions | None = None


@lru_cache
def get_store() -> ArchiveStore:
    return LocalArchiveStore(settings.base_storage_dir)


def get_archiver(store: ArchiveStore = Depends(get_store)) -> Archiver:
    return Archiver(store, settings)


def _not_found(request: Request, archive_id: str, result: ViewResult) -> HTMLResponse:
    links = [
        {
            "href": viewer_link(archive_id, urlparse(entry.url).path, settings.viewer_prefix),
            "title": entry.title or f"Page {i + 1}",
        }
        for i, entry in enumerate(result.entries)
    ]
    return templates.TemplateResponse(
        request,
        "not_found.html",
        {
            "app_name": settings.app_name,
            "archive_id": archive_id,
            "archive_missing": result.archive is None and not result.entries,
            "links": links,
        },
        status_code=404,
    )


@app.post("/api/archive")
async def create_archive(body: ArchiveRequest, archiver: Archiver = Depends(get_archiver)):
    if not body.url.strip() or not is_valid_url(normalize_url(body.url)):
        return JSONResponse({"error": "Invalid URL format"}, status_code=400)

    options = body.options.model_dump(exclude_none=True) if body.options else None
    try:
        archive = await archiver.archive(body.url, options)
    except ArchiveFailed as exc:
        return JSONResponse({"error": str(exc), "archive": exc.archive.to_dict()}, status_code=500)

    return JSONResponse(archive.to_dict())


@app.get("/api/archives")
async def list_archives(store: ArchiveStore = Depends(get_store)):
    return [a.to_dict() for a in await store.get_archives()]


@app.get("/api/archives/{archive_id}")
async def get_archive(archive_id: str, store: ArchiveStore = Depends(get_store)):
    archive = await store.get_archive_by_id(archive_id)
    if archive is None:
        return JSONResponse({"error": "Archive not found"}, status_code=404)
    return archive.to_dict()


@app.get("/api/view/{archive_id}/assets/{filename}")
async def view_asset(archive_id: str, filename: str, store: ArchiveStore = Depends(get_store)):
    data = await store.get_asset(archive_id, filename)
    if data is None:
        logger.warning("Asset not found: %s/%s", archive_id, filename)
        return Response("Asset not found", status_code=404, media_type="text/plain")
    return Response(
        data,
        media_type=content_type_for(filename),
        headers={"Cache-Control": ASSET_CACHE_CONTROL},
    )


@app.get("/api/view/{archive_id}", response_class=HTMLResponse)
async def view_archive(request: Request, archive_id: str, store: ArchiveStore = Depends(get_store)):
    return await view_archive_path(request, archive_id, "", store)


@app.get("/api/view/{archive_id}/{sub_path:path}", response_class=HTMLResponse)
async def view_archive_path(
    request: Request,
    archive_id: str,
    sub_path: str,
    store: ArchiveStore = Depends(get_store),
):
    result = await resolve_page(store, archive_id, sub_path)
    if not result.found:
        return _not_found(request, archive_id, result)
    return HTMLResponse(result.html)
