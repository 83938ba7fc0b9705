"""Common interface of automatic handler devices and their ready-info document."""

from __future__ import annotations

import inspect
import json
import threading
import weakref
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable


class CommType(IntEnum):
    NONE = 0
    UART = 1
    TCP = 2


class AutoParaType(IntEnum):
    BAUDRATE = 1


@dataclass
class SiteReady:
    """Readiness of one site; bits 0-7 of skt_ready stand for sockets 1-8."""

    site_sn: str
    site_alias: str = ""
    env_ready: bool = False
    skt_ready: int = 0


@dataclass
class ReadyInfo:
    """Ready information reported to the handler: adapter count and site states."""

    adapter_num: int = 1
    sites: list[SiteReady] = field(default_factory=list)

    def to_json(self) -> str:
        document = {
            "ProjInfo": {"AdapterNum": self.adapter_num},
            "SiteReady": [
                {
                    "SiteSN": site.site_sn,
                    "SiteAlias": site.site_alias,
                    "SiteEnvRdy": 1 if site.env_ready else 0,
                    "SKTRdy": f"{site.skt_ready:X}",
                }
                for site in self.sites
            ],
        }
        return json.dumps(document)

    @classmethod
    def from_json(cls, text: str) -> ReadyInfo:
        try:
            document = json.loads(text)
            sites = [
                SiteReady(
                    site_sn=str(entry["SiteSN"]),
                    site_alias=str(entry.get("SiteAlias", "")),
                    env_ready=int(entry.get("SiteEnvRdy", 0)) == 1,
                    skt_ready=int(str(entry.get("SKTRdy", "0")), 16),
                )
                for entry in document.get("SiteReady", [])
            ]
            return cls(adapter_num=int(document["ProjInfo"]["AdapterNum"]), sites=sites)
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"malformed ready info: {exc}") from exc


@dataclass
class _Subscription:
    """A subscriber held weakly (bound methods) or strongly (plain callables)."""

    weak: weakref.WeakMethod | None = None
    strong: Callable[[str], None] | None = None

    def resolve(self) -> Callable[[str], None] | None:
        if self.weak is not None:
            return self.weak()
        return self.strong


class MessageHub:
    """Process-wide broadcaster of text messages."""

    _instance: MessageHub | None = None
    _instance_lock = threading.Lock()

    def __init__(self) -> None:
        self._subscribers: list[_Subscription] = []
        self._lock = threading.Lock()

    @classmethod
    def instance(cls) -> MessageHub:
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def subscribe(self, callback: Callable[[str], None]) -> None:
        """Register a callback; bound methods are held weakly."""
        if inspect.ismethod(callback):
            subscription = _Subscription(weak=weakref.WeakMethod(callback))
        else:
            subscription = _Subscription(strong=callback)
        with self._lock:
            self._subscribers.append(subscription)

    def send(self, message: str) -> None:
        with self._lock:
            subscriptions = list(self._subscribers)
        dead = []
        for subscription in subscriptions:
            callback = subscription.resolve()
            if callback is None:
                dead.append(subscription)
                continue
            callback(message)
        if dead:
            with self._lock:
                self._subscribers = [
                    s for s in self._subscribers if not any(s is d for d in dead)
                ]


class Automatic:
    """Base of automatic handler drivers.

    Messages broadcast on the ``MessageHub`` are relayed to
    ``print_message_handlers``. ``protocol_version`` is ``(major, minor)``.
    """

    def __init__(self, protocol_type: str = ""):
        self.protocol_type = protocol_type
        self.protocol_version: tuple[int, int] = (0, 0)
        self.print_message_handlers: list[Callable[[str], None]] = []
        self._dev_ready_info: Callable[[], ReadyInfo] | None = None
        MessageHub.instance().subscribe(self._relay_message)

    @property
    def dev_ready_info_callback(self) -> Callable[[], ReadyInfo] | None:
        return self._dev_ready_info

    def set_dev_ready_info_callback(self, callback: Callable[[], ReadyInfo] | None) -> None:
        """Register the function that reports site readiness."""
        self._dev_ready_info = callback

    def is_protocol_version_larger_than(self, major: int, minor: int) -> bool:
        return self.protocol_version > (major, minor)

    def _relay_message(self, message: str) -> None:
        for handler in list(self.print_message_handlers):
            handler(message)