"""FORMAT keys understood by the merger and their canonical output order."""

from __future__ import annotations

from typing import Dict, Iterable, Tuple

# Output order of FORMAT keys. MIN_DP is absent on purpose: its value is
# moved into DP and the key itself is never emitted.
FORMAT_PRIORITY: Tuple[str, ...] = (
    "GT",
    "AF",
    "DP",
    "FT",
    "GQ",
    "GQX",
    "DPF",
    "DPI",
    "AD",
    "ADF",
    "ADR",
    "VAF",
    "SB",
    "PL",
    "PS",
    "PGT",
    "PID",
)

GENOTYPE_KEY = "GT"
LIKELIHOOD_KEY = "PL"
MIN_DEPTH_KEY = "MIN_DP"
DEPTH_KEY = "DP"
SAMPLE_FILTER_KEY = "FT"

# Copied verbatim whatever happens to the alleles.
PASSTHROUGH_KEYS = frozenset({"AF", "GQ", "GQX", "DP", "DPF", "DPI", "SB", "FT", "PS", "PGT", "PID"})

# One value per allele; VAF has no value for the reference allele.
ALLELIC_DEPTH_KEYS: Tuple[str, ...] = ("AD", "ADF", "ADR", "VAF")
NO_REFERENCE_VALUE_KEYS = frozenset({"VAF"})


class FormatCatalog:
    """Ordered, deduplicated FORMAT keys seen at one merged position."""

    def __init__(self, formats: Iterable[Iterable[str]] = ()) -> None:
        self._keys: Dict[str, None] = {}
        self._formats: Dict[str, None] = {}
        for format_keys in formats:
            self.add(format_keys)

    def add(self, format_keys: Iterable[str]) -> None:
        format_keys = tuple(format_keys)
        field = ":".join(format_keys)
        if field in self._formats:
            return
        self._formats[field] = None
        for key in format_keys:
            self._keys.setdefault(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    @property
    def keys(self) -> Tuple[str, ...]:
        return tuple(self._keys)

    @property
    def formats(self) -> Tuple[str, ...]:
        return tuple(self._formats)

    def is_uniform(self) -> bool:
        """True when every record added so far used the same FORMAT string."""
        return len(self._formats) == 1

    def canonical(self) -> Tuple[str, ...]:
        return tuple(key for key in FORMAT_PRIORITY if key in self._keys)


__all__ = [
    "FORMAT_PRIORITY",
    "GENOTYPE_KEY",
    "LIKELIHOOD_KEY",
    "MIN_DEPTH_KEY",
    "DEPTH_KEY",
    "SAMPLE_FILTER_KEY",
    "PASSTHROUGH_KEYS",
    "ALLELIC_DEPTH_KEYS",
    "NO_REFERENCE_VALUE_KEYS",
    "FormatCatalog",
]
