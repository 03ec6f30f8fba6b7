"""Social share links for a published post.

Pure URL templating; nothing is posted on the user's behalf.
"""

from urllib.parse import quote

from blogflow.config import SUPPORTED_SOCIAL_PLATFORMS
from blogflow.exceptions import ValidationError


def share_message(title: str, excerpt: str, url: str) -> str:
    """Text used by platforms that share a message rather than a link."""
    parts = [title]
    if excerpt:
        parts.append(excerpt)
    parts.append(f"Read more: {url}")
    return "\n\n".join(parts)


def share_url(platform: str, title: str, excerpt: str, url: str) -> str:
    """Build the share-intent URL for one platform.

    Raises:
        ValidationError: For an unsupported platform.
    """
    if platform == "twitter":
        message = share_message(title, excerpt, url)
        return f"https://twitter.com/intent/tweet?text={quote(message, safe='')}"
    if platform == "linkedin":
        return f"https://www.linkedin.com/sharing/share-offsite/?url={quote(url, safe='')}"
    if platform == "facebook":
        return f"https://www.facebook.com/sharer/sharer.php?u={quote(url, safe='')}"
    raise ValidationError(
        f"Unsupported social platform '{platform}'. "
        f"Valid platforms: {list(SUPPORTED_SOCIAL_PLATFORMS)}"
    )


__all__ = ["share_message", "share_url"]
