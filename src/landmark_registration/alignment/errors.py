"""
Alignment errors.

All failures of a landmark alignment request derive from ``AlignmentError``.
``InsufficientLandmarks`` and ``NumericFailure`` are fatal for the request.
``DegenerateConfiguration`` is also a ``UserWarning``: by default it is only
issued as a warning alongside a low-confidence result, and it is raised when
the caller asks for strict behaviour.
"""

from __future__ import annotations

from typing import Optional, Sequence


class AlignmentError(ValueError):
    """Base class for landmark alignment failures."""


class InsufficientLandmarks(AlignmentError):
    """Too few landmark pairs were matched between the two point collections."""

    def __init__(self, found: int, required: int = 3, names: Sequence[str] = ()):
        self.found = found
        self.required = required
        self.names = tuple(names)
        super().__init__(
            f"Cannot perform an alignment with {found} matched landmark pair(s), "
            f"need at least {required}"
        )


class DegenerateConfiguration(AlignmentError, UserWarning):
    """Matched landmarks are (near-)collinear or coincident.

    The rotation about the degenerate axis is not determined by the data.
    """

    def __init__(
        self,
        singular_values: Sequence[float],
        reason: str = "collinear",
        side: Optional[str] = None,
    ):
        self.singular_values = tuple(float(s) for s in singular_values)
        self.reason = reason
        self.side = side
        where = f" in the {side} set" if side else ""
        super().__init__(
            f"Landmark configuration is {reason}{where}; rotation is poorly determined "
            f"(singular values: "
            + ", ".join(f"{s:.3e}" for s in self.singular_values)
            + ")"
        )


class NumericFailure(AlignmentError):
    """The SVD backend failed or produced an invalid rotation."""
