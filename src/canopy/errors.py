"""Exception taxonomy for forest structure, model format and export failures."""

from __future__ import annotations

from typing import Optional


class CanopyError(Exception):
    """Base class for every error raised by canopy.

    Parameters
    ----------
    message : str
        Human-readable description.
    task, tree, node : int or None
        Identifiers of the offending task / tree / node, when known.
        They are appended to the message so the caller can locate the
        problem without inspecting attributes.
    """

    def __init__(
        self,
        message: str,
        *,
        task: Optional[int] = None,
        tree: Optional[int] = None,
        node: Optional[int] = None,
    ) -> None:
        self.task = task
        self.tree = tree
        self.node = node
        location = ", ".join(
            f"{name}={value}"
            for name, value in (("task", task), ("tree", tree), ("node", node))
            if value is not None
        )
        super().__init__(f"{message} [{location}]" if location else message)


class FormatError(CanopyError):
    """A serialized model is malformed or lacks an expected slot."""


class IntegrityError(CanopyError):
    """A node table violates a structural invariant (duplicate id, orphan, cycle)."""


class ConfigError(CanopyError, ValueError):
    """Invalid parameters or input tables."""


class MappingError(CanopyError, KeyError):
    """An export needs a field name that the scorecard does not define."""

    def __init__(
        self,
        message: str,
        *,
        scorecard: str,
        feature: int,
        task: Optional[int] = None,
        tree: Optional[int] = None,
        node: Optional[int] = None,
    ) -> None:
        self.scorecard = scorecard
        self.feature = feature
        super().__init__(message, task=task, tree=tree, node=node)

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return Exception.__str__(self)
