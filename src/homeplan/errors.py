"""Error taxonomy for the planning engine."""

from __future__ import annotations


class HomeplanError(Exception):
    """Base class for every error raised by the engine."""

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": str(self)}


class NotFound(HomeplanError):
    def __init__(self, kind: str, ident: str):
        super().__init__(f"{kind.capitalize()} {ident} not found")
        self.kind = kind
        self.ident = ident


class InvalidDependency(HomeplanError):
    """A dependency edit that can never succeed (e.g. an item depending on itself)."""


class UnknownNode(InvalidDependency):
    def __init__(self, item_id: str):
        super().__init__(f"Invalid dependency template item ID: {item_id}")
        self.item_id = item_id


class CycleDetected(HomeplanError):
    """A dependency set contains a cycle.

    ``names`` lists every node left unresolved by the topological sort, which
    covers the cycle itself and anything downstream of it.
    """

    def __init__(self, names: list[str], ids: list[str] | None = None):
        super().__init__(f"Dependency cycle detected between: {', '.join(names)}")
        self.names = names
        self.ids = ids or []

    def to_dict(self) -> dict:
        return {"error": "CycleDetected", "message": str(self), "names": self.names}


class InvalidTransition(HomeplanError):
    def __init__(self, status: str, kind: str, reason: str | None = None):
        message = reason or f"Invalid status transition: cannot {kind} a task that is {status}"
        super().__init__(message)
        self.status = status
        self.kind = kind


class ItemInUse(HomeplanError):
    def __init__(self, item_id: str, task_count: int):
        super().__init__(
            f"Template item {item_id} is referenced by {task_count} home task(s) and cannot be deleted"
        )
        self.item_id = item_id
        self.task_count = task_count
