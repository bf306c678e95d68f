"""
Push Delivery Client
Forwards notifications to the external push service, which owns the device transport
"""
import httpx
from typing import Optional, List, Dict, Any
import logging

from config import PUSH_SERVICE_URL, PUSH_SERVICE_TOKEN, PUSH_TIMEOUT_SECONDS
from errors import RemoteError

logger = logging.getLogger(__name__)


class PushClient:
    def __init__(
        self,
        url: str = PUSH_SERVICE_URL,
        token: str = PUSH_SERVICE_TOKEN,
        timeout: float = PUSH_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """transport lets tests plug in httpx.MockTransport"""
        self.url = url
        self.timeout = timeout
        self.transport = transport
        self.headers = {"Content-Type": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    async def send(
        self,
        title: str,
        body: str,
        user_id: Optional[str] = None,
        user_ids: Optional[List[str]] = None,
        data: Optional[Dict[str, str]] = None,
        image_url: Optional[str] = None,
        priority: str = "normal"
    ) -> Dict[str, int]:
        """POST one notification; returns {"success": n, "failure": n} device counts"""
        notification: Dict[str, Any] = {"title": title, "body": body, "data": data or {}}
        if image_url:
            notification["image_url"] = image_url

        payload: Dict[str, Any] = {"notification": notification, "priority": priority}
        if user_ids:
            payload["user_ids"] = user_ids
        else:
            payload["user_id"] = user_id

        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            try:
                response = await client.post(self.url, json=payload, headers=self.headers)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise RemoteError(f"Push service returned HTTP {e.response.status_code}") from e
            except httpx.HTTPError as e:
                raise RemoteError(f"Push service unreachable: {e}") from e

        try:
            stats = response.json()["stats"]
            result = {
                "success": int(stats.get("total_success", 0)),
                "failure": int(stats.get("total_failure", 0))
            }
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise RemoteError("Push service returned an unreadable reply") from e
        logger.debug(f"[Push] {title!r} -> {user_id or user_ids}: {result}")
        return result


_default_client: Optional[PushClient] = None


def get_push_client() -> PushClient:
    """FastAPI dependency; overridden in tests"""
    global _default_client
    if _default_client is None:
        _default_client = PushClient()
    return _default_client
