from datetime import datetime, timezone
from typing import List, Tuple
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from app.config import get_settings
from app.services.directory_store import DirectoryStore, get_directory_store

router = APIRouter(tags=["seo"])

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"]

STATIC_PAGES: List[Tuple[str, str, str]] = [
    ("/embed", "daily", "1.0"),
    ("/legal", "monthly", "0.3"),
    ("/admin/login", "monthly", "0.2"),
]


def robots_body(site_url: str) -> str:
    return "\n".join(
        [
            "# Robots.txt para Charlitron Eventos 360",
            "",
            "User-agent: *",
            "Allow: /",
            "Allow: /embed",
            "Allow: /categoria/",
            "Allow: /proveedor/",
            "Allow: /legal",
            "Disallow: /admin/",
            "Disallow: /api/",
            "",
            "User-agent: facebookexternalhit/1.1",
            "Allow: /",
            "",
            "User-agent: Twitterbot",
            "Allow: /",
            "",
            "User-agent: LinkedInBot",
            "Allow: /",
            "",
            f"Sitemap: {site_url}/api/sitemap.xml",
            "",
            "Crawl-delay: 1",
            "",
        ]
    )


def _url_entry(loc: str, lastmod: str, changefreq: str, priority: str) -> str:
    return (
        "  <url>\n"
        f"    <loc>{escape(loc)}</loc>\n"
        f"    <lastmod>{lastmod}</lastmod>\n"
        f"    <changefreq>{changefreq}</changefreq>\n"
        f"    <priority>{priority}</priority>\n"
        "  </url>"
    )


@router.api_route("/robots.txt", methods=ALL_METHODS)
def robots(request: Request):
    if request.method != "GET":
        return JSONResponse(status_code=405, content={"message": "Method not allowed"})
    return Response(
        content=robots_body(get_settings().site_url),
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "public, max-age=86400"},
    )


@router.get("/api/sitemap.xml")
def sitemap(store: DirectoryStore = Depends(get_directory_store)):
    base = get_settings().site_url
    today = datetime.now(timezone.utc).date().isoformat()
    entries = [_url_entry(f"{base}{path}", today, freq, priority) for path, freq, priority in STATIC_PAGES]
    for category in store.list_categories():
        entries.append(_url_entry(f"{base}/categoria/{category.slug}", today, "weekly", "0.8"))
    for provider in store.list_providers():
        lastmod = (provider.updated_at or today)[:10]
        entries.append(_url_entry(f"{base}/proveedor/{provider.id}", lastmod, "weekly", "0.7"))
    body = '<?xml version="1.0" encoding="UTF-8"?>\n'
    body += '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">\n'
    body += "\n".join(entries)
    body += "\n</urlset>\n"
    return Response(
        content=body,
        media_type="application/xml",
        headers={"Cache-Control": "public, max-age=3600"},
    )
