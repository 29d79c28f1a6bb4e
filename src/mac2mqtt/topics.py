"""Topic namespace ``{prefix}/{hostname}/{status|command}/<path>``."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class TopicNamespace:
    prefix: str
    hostname: str

    @property
    def base(self) -> str:
        return f"{self.prefix}/{self.hostname}"

    @property
    def command_base(self) -> str:
        return f"{self.base}/command/"

    @property
    def command_filter(self) -> str:
        """Subscription filter covering every command topic."""
        return f"{self.base}/command/#"

    @property
    def alive(self) -> str:
        return self.status("alive")

    def status(self, path: str) -> str:
        return f"{self.base}/status/{path}"

    def command(self, path: str) -> str:
        return f"{self.base}/command/{path}"

    def command_path(self, topic: str) -> str | None:
        """Path after ``.../command/`` or None when the topic is not one of ours."""
        if not topic.startswith(self.command_base):
            return None
        path = topic[len(self.command_base) :]
        return path or None
