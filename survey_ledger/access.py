from typing import Iterable, Optional, Protocol, runtime_checkable


@runtime_checkable
class AccessControl(Protocol):
    def is_administrator(self, caller_id: Optional[str]) -> bool:
        ...


class StaticAccessControl:
    """Administrator role backed by a fixed set of caller ids."""

    def __init__(self, admins: Iterable[str]):
        self.admins = frozenset(a for a in admins if a)

    def is_administrator(self, caller_id: Optional[str]) -> bool:
        return bool(caller_id) and caller_id in self.admins
