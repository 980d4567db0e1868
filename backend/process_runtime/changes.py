from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional


class ChangeSet:
    """Attribute diff of one mutation: the persisted values it started from and the values about to be committed.

    ``initial`` is ``None`` for a process that has not been saved yet. ``requested`` holds the attribute
    names the caller asked to change, which is how user edits are told apart from rewrites the engine
    performs on its own (e.g. ports reset by a backend migration).
    """

    def __init__(self, initial: Optional[Mapping[str, Any]], current: Mapping[str, Any], requested: Iterable[str] = ()):
        self.is_new = initial is None
        self._initial: Dict[str, Any] = dict(initial or {})
        self._current: Dict[str, Any] = dict(current)
        self.requested: FrozenSet[str] = frozenset(requested)

    def initial(self, field: str) -> Any:
        return self._initial.get(field)

    def current(self, field: str) -> Any:
        return self._current.get(field)

    def changed(self, field: str) -> bool:
        if self.is_new:
            return self._current.get(field) is not None
        return self._initial.get(field) != self._current.get(field)

    def changed_by_request(self, field: str) -> bool:
        return field in self.requested and self.changed(field)

    def changed_fields(self) -> FrozenSet[str]:
        return frozenset(field for field in self._current if self.changed(field))

    def with_current(self, current: Mapping[str, Any]) -> "ChangeSet":
        return ChangeSet(None if self.is_new else self._initial, current, self.requested)
