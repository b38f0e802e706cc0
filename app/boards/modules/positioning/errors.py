from __future__ import annotations


class PositioningError(RuntimeError):
    pass


class PrecisionExhausted(PositioningError):
    """No representable float lies strictly between the two neighbor keys."""

    def __init__(self, lower: float | None, upper: float | None) -> None:
        super().__init__(f"No room for a key between {lower!r} and {upper!r}")
        self.lower = lower
        self.upper = upper


class TransientConflict(PositioningError):
    """A conditioned write lost a race; re-read neighbors and retry."""


class InvalidReference(PositioningError):
    pass


class StoreUnavailable(PositioningError):
    pass
