"""
Tool Connections

Typed, directed edges between pipeline tools, keyed by tool id:
- IMAGE: the target takes the source's output image as input
- RESULT: the target is skipped when the source failed
- COORDINATES: the target's ROI follows the source's detected position
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional


class ConnectionType(Enum):
    IMAGE = "image"
    RESULT = "result"
    COORDINATES = "coordinates"


@dataclass(frozen=True)
class Connection:
    source_id: str
    target_id: str
    kind: ConnectionType


class ConnectionTable:
    """
    Ordered set of connections.

    Each (source, target, kind) triple appears at most once. Connections refer
    to tools only by id, so the table never holds tool objects.

    Example:
        >>> table = ConnectionTable()
        >>> table.add("a", "b", ConnectionType.RESULT)
        True
        >>> table.add("a", "b", ConnectionType.RESULT)
        False
        >>> len(table)
        1
    """

    def __init__(self) -> None:
        self._connections: List[Connection] = []

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections))

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection: object) -> bool:
        return connection in self._connections

    def add(self, source_id: str, target_id: str, kind: ConnectionType) -> bool:
        """
        Add a connection.

        Returns:
            False if the identical connection already exists

        Raises:
            ValueError: If source and target are the same tool
        """
        if source_id == target_id:
            raise ValueError(f"Tool {source_id} cannot be connected to itself")

        connection = Connection(source_id, target_id, ConnectionType(kind))
        if connection in self._connections:
            return False

        self._connections.append(connection)
        return True

    def remove(self, source_id: str, target_id: str, kind: ConnectionType) -> bool:
        connection = Connection(source_id, target_id, ConnectionType(kind))
        if connection not in self._connections:
            return False
        self._connections.remove(connection)
        return True

    def remove_tool(self, tool_id: str) -> int:
        """Drop every connection touching ``tool_id``; returns how many were removed."""
        before = len(self._connections)
        self._connections = [
            c for c in self._connections
            if c.source_id != tool_id and c.target_id != tool_id
        ]
        return before - len(self._connections)

    def clear(self) -> None:
        self._connections.clear()

    def incoming(self, target_id: str, kind: Optional[ConnectionType] = None) -> List[Connection]:
        return [
            c for c in self._connections
            if c.target_id == target_id and (kind is None or c.kind == kind)
        ]

    def outgoing(self, source_id: str, kind: Optional[ConnectionType] = None) -> List[Connection]:
        return [
            c for c in self._connections
            if c.source_id == source_id and (kind is None or c.kind == kind)
        ]
