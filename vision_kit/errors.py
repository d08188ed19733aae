"""Exceptions raised by vision_kit.

Every error also derives from the closest builtin so callers that only know
about ``ValueError``/``NotImplementedError``/``RuntimeError`` still catch them.
"""

from __future__ import annotations

from typing import Sequence, Tuple


class VisionKitError(Exception):
    """Base class for all vision_kit failures."""


class ShapeMismatch(VisionKitError, ValueError):
    """Shapes (or index tuples / data lengths) that must agree do not."""

    def __init__(self, message: str, *shapes: Sequence[int]):
        self.shapes: Tuple[Tuple[int, ...], ...] = tuple(tuple(int(d) for d in s) for s in shapes)
        super().__init__(message)

    @classmethod
    def between(cls, op: str, a: Sequence[int], b: Sequence[int]) -> "ShapeMismatch":
        return cls(f"{op}: shape {tuple(a)} does not match shape {tuple(b)}", a, b)


class NotSupported(VisionKitError, NotImplementedError):
    """A documented limitation (e.g. transpose of rank > 2)."""


class InvalidArgument(VisionKitError, ValueError):
    pass


class DisposedTensorError(VisionKitError, RuntimeError):
    """A tensor was used after ``dispose()``."""
