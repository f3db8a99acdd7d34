"""
Mori — Callback Bus

Named-event publish/subscribe used by scripts to observe the session.

    bus = CallbackBus()
    token = bus.subscribe("onChat", handler)
    bus.invoke("onChat", net_id, text)
    bus.unsubscribe(token)

Handles are opaque to the bus. `caller` decides how a handle is invoked
(plain callables by default, Lua functions in scripting.py), `on_release`
is told when a handle is dropped so foreign references can be freed.

One re-entrant lock guards both the registry and every invocation pass, so a
callback may subscribe/unsubscribe (or trigger another invoke) on the same
thread without deadlocking. Subscribers are invoked synchronously on the
caller's thread; a slow callback stalls whoever called invoke().
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from mori.errors import SubscriberError

log = logging.getLogger(__name__)

H = TypeVar("H")


@dataclass
class Subscription(Generic[H]):
    token: int
    handle: H
    once: bool = False


def _call_plain(handle: Any, args: tuple) -> Any:
    return handle(*args)


class CallbackBus(Generic[H]):
    """Event name -> ordered subscriptions. Empty event keys are never kept."""

    def __init__(
        self,
        caller: Callable[[H, tuple], Any] | None = None,
        on_release: Callable[[H], None] | None = None,
        on_error: Callable[[SubscriberError], None] | None = None,
    ):
        self._caller = caller or _call_plain
        self._on_release = on_release
        self._on_error = on_error
        self._registry: dict[str, list[Subscription[H]]] = {}
        self._tokens = itertools.count(1)
        self._lock = threading.RLock()
        self.error_count = 0

    @property
    def lock(self) -> threading.RLock:
        """The per-session script section. Hold it to run script code."""
        return self._lock

    # ---- Registry ----

    def subscribe(self, event: str, handle: H, once: bool = False) -> int:
        with self._lock:
            token = next(self._tokens)
            self._registry.setdefault(event, []).append(Subscription(token, handle, once))
            return token

    def unsubscribe(self, token: int) -> bool:
        """Remove one subscription. Unknown tokens are a no-op."""
        with self._lock:
            for event, subs in self._registry.items():
                for i, sub in enumerate(subs):
                    if sub.token == token:
                        del subs[i]
                        if not subs:
                            del self._registry[event]
                        self._release(sub)
                        return True
            return False

    def unsubscribe_all(self, event: str) -> int:
        with self._lock:
            subs = self._registry.pop(event, [])
            for sub in subs:
                self._release(sub)
            return len(subs)

    def unsubscribe_everything(self) -> int:
        with self._lock:
            removed = 0
            for event in list(self._registry):
                removed += self.unsubscribe_all(event)
            return removed

    def has_subscribers(self, event: str) -> bool:
        with self._lock:
            return event in self._registry

    def events(self) -> list[str]:
        with self._lock:
            return list(self._registry)

    def count(self, event: str | None = None) -> int:
        with self._lock:
            if event is not None:
                return len(self._registry.get(event, ()))
            return sum(len(subs) for subs in self._registry.values())

    # ---- Invocation ----

    def invoke(self, event: str, *args: Any) -> int:
        """Call every current subscriber of `event` in order. Returns calls made.

        Errors are logged and counted, never propagated. A subscription
        removed earlier in the same pass is skipped. Once-subscriptions are
        detached before their call and released after it, including ones
        that raised, so a nested invoke never sees them.
        """
        with self._lock:
            subs = self._registry.get(event)
            if not subs:
                return 0
            calls = 0
            for sub in list(subs):
                if not self._is_live(event, sub):
                    continue
                if sub.once:
                    self._detach(event, sub)
                try:
                    self._caller(sub.handle, args)
                except Exception as e:
                    self._report(SubscriberError(event, e))
                finally:
                    if sub.once:
                        self._release(sub)
                calls += 1
            return calls

    def _is_live(self, event: str, sub: Subscription[H]) -> bool:
        return any(s is sub for s in self._registry.get(event, ()))

    def _detach(self, event: str, sub: Subscription[H]) -> None:
        subs = self._registry[event]
        subs[:] = [s for s in subs if s is not sub]
        if not subs:
            del self._registry[event]

    def _report(self, err: SubscriberError) -> None:
        self.error_count += 1
        log.warning("Error in '%s' callback: %s", err.event, err.cause)
        if self._on_error:
            try:
                self._on_error(err)
            except Exception:
                log.exception("error sink failed")

    def _release(self, sub: Subscription[H]) -> None:
        if self._on_release:
            try:
                self._on_release(sub.handle)
            except Exception:
                log.exception("failed to release handle for subscription %d", sub.token)
