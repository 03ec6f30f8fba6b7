"""Sitemap rendering and upload."""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from xml.sax.saxutils import escape

from blogflow.config import Settings, get_settings
from blogflow.database import SupabaseDB
from blogflow.utils import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

SITEMAP_NAMESPACE = "http://www.sitemaps.org/schemas/sitemap/0.9"


def _url_entry(loc: str, lastmod: datetime, changefreq: str, priority: float) -> str:
    return (
        "  <url>\n"
        f"    <loc>{escape(loc)}</loc>\n"
        f"    <lastmod>{lastmod.isoformat()}</lastmod>\n"
        f"    <changefreq>{changefreq}</changefreq>\n"
        f"    <priority>{priority:.1f}</priority>\n"
        "  </url>"
    )


def render_sitemap(
    posts: Iterable[Dict[str, Any]],
    site_url: str,
    now: Optional[datetime] = None,
) -> str:
    """Render ``sitemap.xml`` for the home page, the blog index and each post.

    Args:
        posts: Published post rows with ``slug`` and ``updated_at`` (or
            ``published_at``).
        site_url: Public base URL without trailing slash.
        now: ``lastmod`` for the home and index pages.
    """
    now = now or utc_now()
    entries: List[str] = [
        _url_entry(site_url, now, "daily", 1.0),
        _url_entry(f"{site_url}/blog", now, "daily", 0.8),
    ]
    for post in posts:
        if not post.get("slug"):
            continue
        lastmod = (
            parse_timestamp(post.get("updated_at"))
            or parse_timestamp(post.get("published_at"))
            or now
        )
        entries.append(_url_entry(f"{site_url}/blog/{post['slug']}", lastmod, "weekly", 0.6))

    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<urlset xmlns="{SITEMAP_NAMESPACE}">\n'
        + "\n".join(entries)
        + "\n</urlset>\n"
    )


class SitemapGenerator:
    """Regenerates the sitemap from published posts and uploads it."""

    def __init__(self, db: SupabaseDB, settings: Optional[Settings] = None) -> None:
        self.db = db
        self.settings = settings or get_settings()

    async def regenerate(self) -> str:
        """Render and upload the sitemap.

        Returns:
            Public URL of the uploaded file.
        """
        posts = await self.db.get_published_posts()
        xml = render_sitemap(posts, self.settings.site_url)
        url = await self.db.upload_public_file(
            self.settings.sitemap_bucket,
            self.settings.sitemap_path,
            xml.encode("utf-8"),
            "application/xml",
        )
        logger.info("[SITEMAP] Regenerated sitemap with %d post(s)", len(posts))
        return url


__all__ = ["SITEMAP_NAMESPACE", "render_sitemap", "SitemapGenerator"]
