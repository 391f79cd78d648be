"""
Tessera Model Signals — change events owned by a store.

Each open store has an ``EventRegistry`` with one ``Signal`` per
``ModelEvent`` kind. Receivers subscribe per kind and optionally per model
class; there is no process-wide broadcast.

Usage:
    @store.events.connect(ModelEvent.UPDATE, sender=Person)
    async def on_person_update(sender, instance, changed_fields, **kwargs):
        print(f"{instance!r} changed {changed_fields}")

Payloads:
    insert   sender, instance
    update   sender, instance, changed_fields
    delete   sender, instance
    reload   sender, instance, changed_fields
    save     sender, instance, created
"""

from __future__ import annotations

import contextlib
import inspect
import logging
import weakref
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type

logger = logging.getLogger("tessera.models.signals")

__all__ = [
    "Signal",
    "ModelEvent",
    "EventRegistry",
]


class _DeadRef:
    """Sentinel indicating a weak reference that has been garbage-collected."""
    pass


class ModelEvent(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    RELOAD = "reload"
    SAVE = "save"


class Signal:
    """
    A signal that can be connected to receiver functions.

    Receivers can be sync or async callables. They receive:
        sender  : the Model class
        instance: the model instance
        **kwargs: event-specific keyword arguments

    Features:
        - Sender-based filtering
        - Priority ordering (lower runs first)
        - Weak references (auto-disconnect when receiver is GC'd)
        - Temporary connections via context manager

    A receiver that raises is logged and skipped; it never turns a
    successful save into a failure.
    """

    def __init__(self, name: str):
        self.name = name
        # Each entry: (receiver_or_weakref, sender_filter, priority)
        self._receivers: List[tuple] = []

    def connect(
        self,
        receiver: Callable = None,
        *,
        sender: Optional[Type] = None,
        weak: bool = False,
        priority: int = 100,
    ):
        """
        Connect a receiver function. Can be used as a decorator.

        Args:
            receiver: Callable to invoke when signal fires
            sender: Optional model class to filter on
            weak: If True, store a weak reference (auto-cleanup on GC)
            priority: Lower values run first (default: 100)
        """
        def _decorator(fn: Callable) -> Callable:
            self._add_receiver(fn, sender, weak, priority)
            return fn

        if receiver is not None:
            self._add_receiver(receiver, sender, weak, priority)
            return receiver
        return _decorator

    def _add_receiver(
        self,
        fn: Callable,
        sender: Optional[Type],
        weak: bool,
        priority: int,
    ) -> None:
        if weak:
            try:
                if inspect.ismethod(fn):
                    ref = weakref.WeakMethod(fn, self._cleanup)
                else:
                    ref = weakref.ref(fn, self._cleanup)
            except TypeError:
                # Built-in functions can't be weakly referenced
                ref = fn
        else:
            ref = fn

        for existing_ref, existing_sender, _ in self._receivers:
            if self._resolve_ref(existing_ref) == fn and existing_sender is sender:
                return

        self._receivers.append((ref, sender, priority))
        # Stable sort preserves insertion order for ties
        self._receivers.sort(key=lambda x: x[2])

    def _cleanup(self, ref: Any) -> None:
        self._receivers = [
            (r, s, p) for r, s, p in self._receivers
            if self._resolve_ref(r) is not _DeadRef
        ]

    @staticmethod
    def _resolve_ref(ref: Any) -> Any:
        if isinstance(ref, weakref.ref):
            obj = ref()
            if obj is None:
                return _DeadRef
            return obj
        return ref

    def disconnect(self, receiver: Callable, *, sender: Optional[Type] = None) -> bool:
        """
        Disconnect a receiver.

        Returns True if the receiver was found and removed.
        """
        for i, (ref, s, p) in enumerate(self._receivers):
            if self._resolve_ref(ref) == receiver and s is sender:
                self._receivers.pop(i)
                return True
        return False

    async def send(self, sender: Type, **kwargs) -> List[Any]:
        """
        Fire the signal, calling all connected receivers in priority order.

        Returns:
            List of return values (or raised exceptions) from receivers
        """
        results = []
        for ref, filter_sender, _ in list(self._receivers):
            receiver = self._resolve_ref(ref)
            if receiver is _DeadRef:
                continue
            if filter_sender is not None and sender is not filter_sender:
                continue
            try:
                result = receiver(sender=sender, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                results.append(result)
            except Exception as exc:
                logger.error(
                    f"Signal '{self.name}' receiver {getattr(receiver, '__name__', receiver)!r} "
                    f"raised {exc.__class__.__name__}: {exc}"
                )
                results.append(exc)
        return results

    @property
    def receivers(self) -> List[Callable]:
        """List of connected receiver functions (resolved, alive only)."""
        result = []
        for ref, _, _ in self._receivers:
            resolved = self._resolve_ref(ref)
            if resolved is not _DeadRef:
                result.append(resolved)
        return result

    def has_listeners(self, sender: Optional[Type] = None) -> bool:
        """Check if any receivers are connected (optionally for a sender)."""
        return any(
            self._resolve_ref(ref) is not _DeadRef
            and (sender is None or s is None or s is sender)
            for ref, s, _ in self._receivers
        )

    @contextlib.contextmanager
    def connected(self, fn: Callable, *, sender: Optional[Type] = None, priority: int = 100):
        """
        Context manager for temporary signal connection.

        Usage:
            with store.events[ModelEvent.SAVE].connected(handler, sender=Person):
                await person.save()
        """
        self._add_receiver(fn, sender, weak=False, priority=priority)
        try:
            yield
        finally:
            self.disconnect(fn, sender=sender)

    def clear(self) -> None:
        """Remove all receivers."""
        self._receivers.clear()

    def __repr__(self) -> str:
        alive = sum(1 for ref, _, _ in self._receivers if self._resolve_ref(ref) is not _DeadRef)
        return f"<Signal '{self.name}' receivers={alive}>"


class EventRegistry:
    """
    Typed event dispatch owned by one store: one Signal per ModelEvent.
    """

    def __init__(self):
        self._signals: Dict[ModelEvent, Signal] = {
            kind: Signal(kind.value) for kind in ModelEvent
        }

    def __getitem__(self, kind: ModelEvent) -> Signal:
        return self._signals[ModelEvent(kind)]

    def connect(
        self,
        kind: ModelEvent,
        receiver: Callable = None,
        *,
        sender: Optional[Type] = None,
        weak: bool = False,
        priority: int = 100,
    ):
        """Subscribe to one event kind; usable as a decorator."""
        return self[kind].connect(receiver, sender=sender, weak=weak, priority=priority)

    def disconnect(self, kind: ModelEvent, receiver: Callable, *, sender: Optional[Type] = None) -> bool:
        return self[kind].disconnect(receiver, sender=sender)

    async def emit(self, kind: ModelEvent, sender: Type, **kwargs) -> List[Any]:
        signal = self[kind]
        if not signal.has_listeners(sender):
            return []
        return await signal.send(sender, **kwargs)

    def clear(self) -> None:
        for signal in self._signals.values():
            signal.clear()
