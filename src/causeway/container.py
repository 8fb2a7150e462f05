"""
Minimal dependency-injection container.

The coordinators only ever need "give me an instance of this consumer class,
built from these dependencies". :class:`Resolver` is that interface;
:class:`Container` is a small default implementation so the package works
without an external DI framework. Instances are created lazily on first
``resolve`` and cached.

Usage::

    container = Container()
    container.register_instance(Mailer, SmtpMailer())
    container.register(SendReceipt, [Mailer])
    consumer = container.resolve(SendReceipt)   # SendReceipt(SmtpMailer())
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, TypeVar, runtime_checkable

from causeway.core.errors import RegistrationError

T = TypeVar("T")


@runtime_checkable
class Resolver(Protocol):
    def register(self, cls: type[Any], deps: Sequence[type[Any]] = ()) -> None: ...

    def resolve(self, cls: type[T]) -> T: ...


class Container:
    """Lazy singleton container keyed by class."""

    def __init__(self) -> None:
        self._deps: dict[type[Any], tuple[type[Any], ...]] = {}
        self._explicit: dict[type[Any], Any] = {}
        self._instances: dict[type[Any], Any] = {}
        self._resolving: set[type[Any]] = set()

    def register(self, cls: type[Any], deps: Sequence[type[Any]] = ()) -> None:
        """Declare how to build ``cls``; re-registering replaces the deps."""
        self._deps[cls] = tuple(deps)

    def register_instance(self, cls: type[Any], instance: Any) -> None:
        self._explicit[cls] = instance

    def has(self, cls: type[Any]) -> bool:
        return cls in self._explicit or cls in self._deps

    def resolve(self, cls: type[T]) -> T:
        if cls in self._explicit:
            return self._explicit[cls]
        if cls in self._instances:
            return self._instances[cls]
        if cls not in self._deps:
            raise RegistrationError(f"No provider registered for {cls.__name__}")
        if cls in self._resolving:
            raise RegistrationError(f"Circular dependency while resolving {cls.__name__}")
        self._resolving.add(cls)
        try:
            args = [self.resolve(dep) for dep in self._deps[cls]]
            instance = cls(*args)
        finally:
            self._resolving.discard(cls)
        self._instances[cls] = instance
        return instance

    def clear(self) -> None:
        """Drop lazily built instances; registrations and explicit instances are kept."""
        self._instances.clear()


__all__ = ["Resolver", "Container"]
