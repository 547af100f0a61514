from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from ..core.codes import normalize_code


@dataclass
class BatchResult:
    """Per-item outcome of a sequential, non-atomic batch."""

    batch_id: str
    results: Dict[str, bool] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for ok in self.results.values() if ok)

    @property
    def failed(self) -> int:
        return sum(1 for ok in self.results.values() if not ok)

    @property
    def all_succeeded(self) -> bool:
        return bool(self.results) and self.failed == 0

    def record(self, code: str, error: Exception | None = None) -> None:
        self.results[code] = error is None
        if error is not None:
            self.errors.append(f"{code}: {error}")


def unique_codes(codes: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    ordered: List[str] = []
    for raw in codes:
        code = normalize_code(raw) or ""
        if code in seen:
            continue
        seen.add(code)
        ordered.append(code)
    return ordered
