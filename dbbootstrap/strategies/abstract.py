"""
Transport strategy interfaces and the connection handle contract.

Concrete strategies (socket pool, edge WebSocket pool) implement
TransportStrategy and hand back a ConnectionHandle so the prober, the
migration runner and downstream repositories never see which driver sits
underneath.
"""

from __future__ import annotations

import abc
from typing import Any, AsyncContextManager, Optional, Protocol, Sequence, runtime_checkable

from dbbootstrap.domain.models import DatabaseConfig, RowSet


@runtime_checkable
class Executor(Protocol):
    """Anything that can run a statement and return rows."""

    async def execute(self, statement: str, params: Optional[Sequence[Any]] = None) -> RowSet:
        """
        Run ``statement`` with ``%s`` placeholders bound from ``params``.
        """
        ...

    async def execute_script(self, script: str) -> None:
        """Run one or more unparameterized statements, discarding results."""
        ...


@runtime_checkable
class ConnectionHandle(Executor, Protocol):
    """
    Owner of one pooled connection resource.

    Attributes
    ----------
    strategy : str
        Name of the transport strategy that opened the pool.
    """

    strategy: str

    def transaction(self) -> AsyncContextManager[Executor]:
        """Pin one connection and run everything inside a single transaction."""
        ...

    async def release(self) -> None:
        """Close the pool and any transport it owns."""
        ...


class TransportStrategy(abc.ABC):
    """
    Base for strategies that open a pool for a given config.

    Subclasses set ``name`` and ``description`` and implement ``open``.
    """

    name: str
    description: str

    @abc.abstractmethod
    async def open(self, config: DatabaseConfig) -> ConnectionHandle:  # pragma: no cover - interface only
        """Open a bounded pool and return its handle."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


__all__ = [
    "ConnectionHandle",
    "Executor",
    "TransportStrategy",
]
