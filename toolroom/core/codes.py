"""Readable code and QR payload normalisation.

Labels carry payloads such as ``TOOL#T1234`` or ``CONSUMABLE#C0001`` while
people type bare codes, sometimes with stray whitespace or lower-case
letters. These helpers turn both into the candidate codes we look up.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Literal

__all__ = ["ScanTarget", "normalize_code", "code_aliases", "parse_scan_payload"]


ScanKind = Literal["tool", "consumable", "unknown"]

_PREFIX_KINDS: dict[str, ScanKind] = {
    "TOOL": "tool",
    "CONSUMABLE": "consumable",
}


@dataclass(frozen=True)
class ScanTarget:
    kind: ScanKind
    code: str


def _strip_and_collapse(value: str) -> str:
    """Trim surrounding whitespace and squash repeated spaces into one."""

    value = value.strip()
    value = re.sub(r"\s+", " ", value)
    return value


def normalize_code(raw: str | None) -> str | None:
    """Return the trimmed code, or ``None`` when nothing usable remains."""

    if raw is None:
        return None
    cleaned = _strip_and_collapse(raw)
    return cleaned or None


def code_aliases(raw: str | None) -> list[str]:
    """Return code variants that should be considered equivalent.

    The code exactly as typed (trimmed) comes first so cache and store hits
    on the stored spelling win; the upper-cased variant follows.
    """

    cleaned = normalize_code(raw)
    if cleaned is None:
        return []

    aliases: List[str] = []
    seen: set[str] = set()

    def add(candidate: str | None) -> None:
        if not candidate or candidate in seen:
            return
        seen.add(candidate)
        aliases.append(candidate)

    add(cleaned)
    add(cleaned.upper())
    return aliases


def parse_scan_payload(payload: str | None) -> ScanTarget | None:
    """Classify a decoded QR payload.

    ``TOOL#T1234`` and ``CONSUMABLE#C0001`` carry an explicit kind. A bare
    code is classified by its leading letter (``T`` tools, ``C``
    consumables) and otherwise reported as ``unknown``.
    """

    cleaned = normalize_code(payload)
    if cleaned is None:
        return None

    if "#" in cleaned:
        prefix, _, code = cleaned.rpartition("#")
        code = code.strip()
        if not code:
            return None
        kind = _PREFIX_KINDS.get(prefix.strip().upper(), "unknown")
        return ScanTarget(kind=kind, code=code)

    first = cleaned[0].upper()
    if first == "T":
        return ScanTarget(kind="tool", code=cleaned)
    if first == "C":
        return ScanTarget(kind="consumable", code=cleaned)
    return ScanTarget(kind="unknown", code=cleaned)
