"""Per-update handler context.

A :class:`Context` is built fresh for every update by :func:`compose_context`
and handed to each handler as its first argument. It is a read-only mapping of
shorthand names to the values the registered shorthands produced for that one
update; attribute access is sugar for item access.

Invariant: a context is never reused across updates and never mutated after it
has been composed.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any

from .api import BotApi
from .entities import Update
from .shorthands import ShortHandRegistry


class Context(Mapping[str, Any]):
    """Read-only view of the shorthands composed for one update.

    Bundle keys that clash with the mapping methods or with `update` and `api`
    are reachable by item access only, e.g. `ctx["items"]`.
    """

    __slots__ = ("_values", "update", "api")

    def __init__(self, values: Mapping[str, Any], *, update: Update, api: BotApi):
        object.__setattr__(self, "_values", MappingProxyType(dict(values)))
        object.__setattr__(self, "update", update)
        object.__setattr__(self, "api", api)

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._values[name]
        except KeyError:
            raise AttributeError(
                f"No short hand named {name!r} on this context"
            ) from None

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Context is read-only")

    def __repr__(self) -> str:
        names = list(self._values)
        return f"Context(update_id={self.update.update_id}, names={names})"


def compose_context(
    update: Update, api: BotApi, registry: ShortHandRegistry
) -> Context:
    """Run every registered shorthand for `update` and merge the results.

    Shorthands run in registration order; a bundle (a factory returning a
    `Mapping`) contributes all of its keys, any other value is stored under the
    shorthand's name. Later shorthands override earlier ones on key clashes,
    with a warning logged once per key.
    """

    values: dict[str, Any] = {}
    producers: dict[str, str] = {}
    for name, factory in registry.items():
        produced = factory(update, api)
        contributed = produced if isinstance(produced, Mapping) else {name: produced}
        for key, value in contributed.items():
            earlier = producers.get(key)
            if earlier is not None and earlier != name:
                registry.warn_key_overridden(key, earlier=earlier, later=name)
            producers[key] = name
            values[key] = value
    return Context(values, update=update, api=api)
