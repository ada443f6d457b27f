"""First-present-value resolution across heterogeneous provider records."""

import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Sequence, Tuple

from market_movers.models.datatypes import PartialQuote

Getter = Callable[[PartialQuote], Optional[float]]


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    return value != 0


def resolve(*candidates: Any, fallback: Any = 0.0) -> Any:
    """Return the first candidate that is not None, zero or NaN, else ``fallback``."""
    for value in candidates:
        if _is_present(value):
            return value
    return fallback


def field(name: str) -> Getter:
    """Getter reading attribute ``name`` off a :class:`PartialQuote`."""
    def getter(record: PartialQuote) -> Optional[float]:
        return getattr(record, name)
    getter.__name__ = name
    return getter


@dataclass(frozen=True)
class Waterfall:
    """An ordered list of ``(record_index, getter)`` probes for one canonical field.

    ``record_index`` selects which of the per-provider records passed to
    :meth:`resolve` the getter is applied to, so one priority list can mix
    e.g. the chain record's last trade with an enrichment provider's price.
    """
    name: str
    steps: Tuple[Tuple[int, Getter], ...]

    def candidates(self, records: Sequence[Optional[PartialQuote]]) -> Iterable[Any]:
        for index, getter in self.steps:
            record = records[index] if index < len(records) else None
            yield getter(record) if record is not None else None

    def resolve(self, records: Sequence[Optional[PartialQuote]], fallback: Any = 0.0) -> Any:
        return resolve(*self.candidates(records), fallback=fallback)

    def resolve_with_origin(
        self, records: Sequence[Optional[PartialQuote]], fallback: Any = 0.0,
    ) -> Tuple[Any, Optional[int]]:
        """Like :meth:`resolve` but also return the index of the record that supplied the value."""
        for (index, _), value in zip(self.steps, self.candidates(records)):
            if _is_present(value):
                return value, index
        return fallback, None
