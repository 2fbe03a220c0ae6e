"""Where the user is — parsed from the app route.

Routes look like "/chat?roomId=42" or "/tasks?taskId=7". Only the first
path segment (the view) and the query parameters matter to the policy and
the auto-mark-read coordinator.
"""

from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import parse_qsl, urlsplit


@dataclass(frozen=True)
class Location:
    path: str = "/"
    params: dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, route: str) -> "Location":
        parts = urlsplit(route)
        path = parts.path or "/"
        return cls(path=path, params=dict(parse_qsl(parts.query)))

    @property
    def view(self) -> str:
        """First path segment: "chat", "tasks", "call-history", "hr", ... ("" for /)."""
        return self.path.strip("/").split("/", 1)[0]

    @property
    def room_id(self) -> Optional[str]:
        return self.params.get("roomId") or None

    @property
    def task_id(self) -> Optional[str]:
        return self.params.get("taskId") or None

    def __str__(self) -> str:
        if not self.params:
            return self.path
        query = "&".join(f"{k}={v}" for k, v in self.params.items())
        return f"{self.path}?{query}"
