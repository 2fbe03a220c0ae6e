"""REST client for the Staffline API.

Learn: The client core talks REST for everything that must be durable:
loading the inbox, acknowledging notifications, recording call logs. The
class satisfies both ReadAcknowledger (auto-mark-read) and CallLogSink
(call manager), so the core never sees httpx directly.

Errors surface as httpx.HTTPStatusError (raise_for_status) or transport
errors; callers decide whether to retry.
"""

from typing import Any, Optional

import httpx

from staffline.config import settings
from staffline.schemas.call import CallLogCreate, CallLogRead
from staffline.schemas.notification import NotificationCreate, NotificationRead


class StafflineClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        root = (base_url or settings.api_url).rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=f"{root}/api/v1", headers=headers, timeout=timeout
        )

    async def __aenter__(self) -> "StafflineClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        r = await self._client.request(method, path, **kwargs)
        r.raise_for_status()
        return r.json()

    async def health(self) -> dict:
        return await self._request("GET", "/health")

    # ─── Notifications ────────────────────────────────────

    async def list_notifications(
        self, unread: bool = False, category: Optional[str] = None, limit: int = 100
    ) -> list[NotificationRead]:
        params: dict = {"limit": limit}
        if unread:
            params["unread"] = "true"
        if category:
            params["category"] = category
        data = await self._request("GET", "/notifications", params=params)
        return [NotificationRead.model_validate(n) for n in data]

    async def create_notification(self, body: NotificationCreate) -> NotificationRead:
        data = await self._request("POST", "/notifications", json=body.model_dump(mode="json"))
        return NotificationRead.model_validate(data)

    async def mark_read(self, notification_id: str) -> NotificationRead:
        data = await self._request("PUT", f"/notifications/{notification_id}/read")
        return NotificationRead.model_validate(data)

    async def mark_read_batch(self, notification_ids: list[str]) -> int:
        data = await self._request(
            "PUT", "/notifications/batch-read", json={"notification_ids": notification_ids}
        )
        return data["updated"]

    async def mark_by_resource(self, resource_id: str, category: str) -> int:
        data = await self._request(
            "PUT",
            "/notifications/mark-by-resource",
            json={"resource_id": resource_id, "category": category},
        )
        return data["updated"]

    # ─── Calls ────────────────────────────────────────────

    async def start_call(
        self,
        receiver_id: str,
        kind: str = "audio",
        room_id: Optional[str] = None,
        call_id: Optional[str] = None,
    ) -> CallLogRead:
        body = {"receiver_id": receiver_id, "kind": kind, "room_id": room_id, "call_id": call_id}
        data = await self._request("POST", "/calls/start", json=body)
        return CallLogRead.model_validate(data)

    async def update_call_status(
        self, call_id: str, status: str, duration: Optional[int] = None
    ) -> CallLogRead:
        data = await self._request(
            "PATCH", f"/calls/{call_id}/status", json={"status": status, "duration": duration}
        )
        return CallLogRead.model_validate(data)

    async def record_call(self, log: CallLogCreate) -> CallLogRead:
        data = await self._request("POST", "/calls/logs", json=log.model_dump(mode="json"))
        return CallLogRead.model_validate(data)

    async def call_history(self, limit: int = 100) -> list[CallLogRead]:
        data = await self._request("GET", "/calls/history", params={"limit": limit})
        return [CallLogRead.model_validate(c) for c in data]

    async def room_calls(self, room_id: str, limit: int = 100) -> list[CallLogRead]:
        data = await self._request("GET", f"/calls/room/{room_id}", params={"limit": limit})
        return [CallLogRead.model_validate(c) for c in data]
