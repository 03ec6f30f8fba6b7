"""
Immediate publishing of a post.

``Publisher.publish_post`` validates the post, flips it to ``published``,
flags its latest version as the published one, and then runs the
optional side effects requested in ``PublishingOptions``:

- SEO meta description (derived from the excerpt or content)
- Sitemap regeneration and upload
- Social share link generation per platform
- Subscriber notification over HTTP

Each side effect is isolated: a failure becomes a warning in
``PublishingResult.errors`` and the publish is not rolled back.
"""

import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from blogflow.config import Settings, get_settings
from blogflow.database import SupabaseDB
from blogflow.exceptions import IncompletePostError, PostNotFoundError
from blogflow.logging import ComponentLogger, LogComponent
from blogflow.publishing.models import PublishingOptions, PublishingResult
from blogflow.publishing.notifications import NotificationClient
from blogflow.publishing.sitemap import SitemapGenerator
from blogflow.publishing.social import share_url
from blogflow.utils import utc_now
from blogflow.versioning.version_store import VersionStore

logger = logging.getLogger(__name__)

META_DESCRIPTION_LENGTH = 160

_LINK_TARGET = re.compile(r"\]\([^)]*\)")
_MARKDOWN_NOISE = re.compile(r"[#>*_`\[\]!]")
_WHITESPACE = re.compile(r"\s+")


def build_meta_description(post: Dict[str, Any], max_length: int = META_DESCRIPTION_LENGTH) -> str:
    """Meta description from the excerpt, else the start of the content.

    Markdown punctuation and link targets are stripped and whitespace is
    collapsed; longer text is cut at a word boundary and ends in "...".
    """
    source = post.get("excerpt") or post.get("content") or ""
    text = _MARKDOWN_NOISE.sub(" ", _LINK_TARGET.sub("]", source))
    text = _WHITESPACE.sub(" ", text).strip()
    if len(text) <= max_length:
        return text
    cut = text[: max_length - 3].rsplit(" ", 1)[0]
    return f"{cut}..."


async def track_publishing_event(
    db: SupabaseDB, post_id: str, action: str, **metadata: Any
) -> None:
    """Record a publishing analytics event; failures are only logged."""
    try:
        await db.track_event({
            "post_id": post_id,
            "event_type": "publish",
            "metadata": {"action": action, "timestamp": utc_now().isoformat(), **metadata},
        })
    except Exception:
        logger.warning(
            "[PUBLISH] Failed to track '%s' event for post %s",
            action, post_id, exc_info=True,
        )


class Publisher:
    """Publishes posts and runs their side effects.

    Args:
        db: Database client.
        version_store: Used to flag the published version.
        settings: Runtime settings.
        notifier: Subscriber notification client.
        sitemap: Sitemap generator.
    """

    def __init__(
        self,
        db: SupabaseDB,
        version_store: Optional[VersionStore] = None,
        settings: Optional[Settings] = None,
        notifier: Optional[NotificationClient] = None,
        sitemap: Optional[SitemapGenerator] = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.version_store = version_store or VersionStore(db, settings=self.settings)
        self.notifier = notifier or NotificationClient(self.settings)
        self.sitemap = sitemap or SitemapGenerator(db, self.settings)
        self.log = ComponentLogger(LogComponent.PUBLISHER)

    def post_url(self, post: Dict[str, Any]) -> str:
        return f"{self.settings.site_url}/blog/{post.get('slug') or post['id']}"

    async def publish_post(
        self, post_id: str, options: Optional[PublishingOptions] = None
    ) -> PublishingResult:
        """Publish a post now.

        Args:
            post_id: Post to publish.
            options: Side effects to run.  Defaults to none.

        Returns:
            ``PublishingResult`` with side-effect warnings in ``errors``.

        Raises:
            PostNotFoundError: If the post does not exist.
            IncompletePostError: If title or content is empty; the post
                is left unchanged.
            StorageUnavailableError: If the status update fails.
        """
        options = options or PublishingOptions()

        async with self.log.timed("Publish post", post_id=post_id):
            post = await self.db.get_post(post_id)
            if post is None:
                raise PostNotFoundError(f"Post {post_id} not found")
            if not (post.get("title") or "").strip() or not (post.get("content") or "").strip():
                raise IncompletePostError("Post must have title and content to publish")

            published_at = utc_now()
            updated = await self.db.update_post(post_id, {
                "status": "published",
                "published_at": published_at.isoformat(),
            })
            if updated is None:
                raise PostNotFoundError(f"Post {post_id} not found")

            result = PublishingResult(
                post_id=post_id,
                published_url=self.post_url(post),
                published_at=published_at,
            )
            logger.info("[PUBLISH] Post %s published at %s", post_id, result.published_url)

            await self._run_side_effects(post, options, result)
            await track_publishing_event(
                self.db, post_id, "published", warnings=len(result.errors)
            )

        if result.errors:
            await self.log.warning(
                f"Published with {len(result.errors)} warning(s)",
                post_id=post_id,
                data={"errors": result.errors},
            )
        return result

    # ================================================================
    # SIDE EFFECTS
    # ================================================================

    async def _run_side_effects(
        self,
        post: Dict[str, Any],
        options: PublishingOptions,
        result: PublishingResult,
    ) -> None:
        post_id = post["id"]

        async def mark_version() -> None:
            latest = await self.version_store.get_latest_version(post_id)
            if latest is not None:
                await self.version_store.mark_published(post_id, latest.id)
                result.version_id = latest.id

        await self._isolated("mark published version", mark_version, result)

        if options.seo_optimize:
            async def optimize_seo() -> None:
                if post.get("meta_description"):
                    result.meta_description = post["meta_description"]
                    return
                description = build_meta_description(post)
                await self.db.update_post(post_id, {"meta_description": description})
                result.meta_description = description

            await self._isolated("SEO optimization", optimize_seo, result)

        if options.generate_sitemap:
            async def regenerate_sitemap() -> None:
                result.sitemap_url = await self.sitemap.regenerate()

            await self._isolated("sitemap generation", regenerate_sitemap, result)

        if options.share_on_social:
            platforms: List[str] = (
                options.social_platforms
                if options.social_platforms is not None
                else list(self.settings.default_social_platforms)
            )
            for platform in platforms:
                try:
                    result.social_shares[platform] = share_url(
                        platform,
                        post.get("title", ""),
                        post.get("excerpt") or "",
                        result.published_url,
                    )
                except Exception as exc:
                    result.errors.append(f"Failed to share on {platform}: {exc}")

        if options.notify_subscribers:
            async def notify() -> None:
                await self.notifier.notify_new_post(post, result.published_url)

            await self._isolated("subscriber notification", notify, result)

    async def _isolated(
        self,
        label: str,
        action: Callable[[], Awaitable[None]],
        result: PublishingResult,
    ) -> None:
        try:
            await action()
        except Exception as exc:
            logger.warning(
                "[PUBLISH] %s failed for post %s: %s", label, result.post_id, exc
            )
            result.errors.append(f"{label.capitalize()} failed: {exc}")


__all__ = ["Publisher", "build_meta_description", "track_publishing_event"]
