"""Minimal observable for bake progress and completion notifications.

Observers are zero-argument callables; listeners re-read whatever state
they need (e.g. ``ProgressiveLightmap.get_shadow_map()``) when notified.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Observer:
    """Registration handle returned by :meth:`Observable.add`.

    Attributes
    ----------
    callback : Callable[[], None]
        Function invoked on every notification.
    once : bool
        If True, the observer is removed after its first notification.
    """

    callback: Callable[[], None]
    once: bool = False


class Observable:
    """Ordered list of payload-less observers.

    Parameters
    ----------
    name : str
        Label used in debug logging.
    """

    def __init__(self, name: str = "observable") -> None:
        self._name = name
        self._observers: list[Observer] = []

    def __len__(self) -> int:
        return len(self._observers)

    def add(self, callback: Callable[[], None]) -> Observer:
        observer = Observer(callback)
        self._observers.append(observer)
        return observer

    def add_once(self, callback: Callable[[], None]) -> Observer:
        observer = Observer(callback, once=True)
        self._observers.append(observer)
        return observer

    def remove(self, observer: Observer) -> bool:
        """Unregister an observer. Returns False if it was not registered."""
        try:
            self._observers.remove(observer)
        except ValueError:
            return False
        return True

    def notify(self) -> None:
        """Invoke every observer in registration order.

        The list is snapshotted first, so observers may add or remove
        registrations while being notified.
        """
        for observer in list(self._observers):
            if observer.once:
                self.remove(observer)
            observer.callback()
        logger.debug("%s notified", self._name)

    def clear(self) -> None:
        self._observers.clear()
