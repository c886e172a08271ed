"""
Strategies package for dbbootstrap.

Re-exports the transport interfaces and the two concrete strategies so
downstream code can import from `dbbootstrap.strategies` directly.
"""

from dbbootstrap.strategies.abstract import ConnectionHandle, Executor, TransportStrategy
from dbbootstrap.strategies.edge_pool import EdgeConnectionHandle, EdgePoolStrategy
from dbbootstrap.strategies.socket_pool import SocketConnectionHandle, SocketPoolStrategy

__all__ = [
    # Abstracts
    "ConnectionHandle",
    "Executor",
    "TransportStrategy",
    # Concrete strategies
    "EdgeConnectionHandle",
    "EdgePoolStrategy",
    "SocketConnectionHandle",
    "SocketPoolStrategy",
]
