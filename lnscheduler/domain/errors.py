from __future__ import annotations


class ConditionError(Exception):
    """A trigger condition could not be evaluated this tick (never fatal)."""


class NoMarketDataError(ConditionError):
    def __init__(self, message: str = "No market data available") -> None:
        super().__init__(message)


class InvalidConditionError(ConditionError):
    """The schedule's trigger fields are missing or malformed for its declared type."""


class InvalidStatusTransition(ValueError):
    def __init__(self, entity: str, current: str | None, new: str) -> None:
        self.entity = entity
        self.current = current
        self.new = new
        super().__init__(f"{entity} cannot move from '{current}' to '{new}'")


class InvalidScheduleError(ValueError):
    """A schedule definition violates the data-model invariants."""


class ConcurrentUpdateError(RuntimeError):
    """A row changed status between read and compare-and-set write."""


class NotFoundError(LookupError):
    pass
