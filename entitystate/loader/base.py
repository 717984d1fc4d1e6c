"""Loader capability: populate a MachineBuilder from some source."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class Loader(Protocol):
    def load(self, builder) -> int:
        """
        Add the source's transitions for ``builder.name`` to ``builder``.

        Either every transition is added or none is.

        Returns:
            Number of transitions added.

        Raises:
            BadLoaderData: If the source is missing or malformed.
        """
        ...
