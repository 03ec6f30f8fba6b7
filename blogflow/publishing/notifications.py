"""
Async subscriber notification client.

Uses ``httpx`` to POST a JSON payload describing a newly published post
to the configured notification (email) service.  Transient HTTP errors
(connection failures and 5xx responses) are retried with exponential
backoff.  Any other error status means the request itself is wrong and
fails at once.  Either way the publisher records a warning and the publish stands.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from blogflow.config import Settings, get_settings
from blogflow.exceptions import NotificationError
from blogflow.utils import with_retry

logger = logging.getLogger(__name__)


class NotificationClient:
    """Async wrapper around the subscriber notification endpoint.

    Args:
        settings: Runtime settings providing ``notification_service_url``,
            ``notification_api_key`` and ``notification_timeout_seconds``.

    Usage::

        client = NotificationClient()
        await client.notify_new_post(post, "https://example.com/blog/slug")
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.notification_service_url)

    async def notify_new_post(self, post: Dict[str, Any], url: str) -> Dict[str, Any]:
        """Notify subscribers about a newly published post.

        Args:
            post: Post row (``id``, ``title``, ``excerpt``...).
            url: Public URL of the post.

        Returns:
            JSON response from the notification service (``{}`` when the
            service returns no body).

        Raises:
            NotificationError: If no notification service is configured, or
                the service rejects the request with a non-5xx error status.
            RetryExhaustedError: When every attempt failed with a transport
                error or a 5xx response.
        """
        if not self.is_configured:
            raise NotificationError("NOTIFICATION_SERVICE_URL is not configured")

        payload = {
            "event": "post_published",
            "post_id": post.get("id"),
            "title": post.get("title", ""),
            "excerpt": post.get("excerpt") or "",
            "url": url,
        }
        return await self._send(payload)

    @with_retry(
        max_attempts=3,
        retryable_exceptions=(httpx.TransportError, httpx.HTTPStatusError),
        operation_name="notify_subscribers",
    )
    async def _send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.settings.notification_api_key:
            headers["Authorization"] = f"Bearer {self.settings.notification_api_key}"

        async with httpx.AsyncClient(
            timeout=self.settings.notification_timeout_seconds
        ) as client:
            response = await client.post(
                self.settings.notification_service_url,
                headers=headers,
                json=payload,
            )
            if response.is_server_error:
                response.raise_for_status()
            if not response.is_success:
                raise NotificationError(
                    f"Notification service rejected the request: HTTP {response.status_code}"
                )

            logger.debug(
                "[NOTIFY] Notification sent for post %s (status=%d)",
                payload.get("post_id"),
                response.status_code,
            )
            return response.json() if response.content else {}


__all__ = ["NotificationClient"]
