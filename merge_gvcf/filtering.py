"""FILTER and FORMAT values that make an input line unusable for merging.

``DEFAULT_REJECTED_FILTERS`` lists the FILTER keys produced by the supported
callers that are known to discard unreliable calls:

* Strelka2: ``LowDepth`` and ``HighDPFRatio`` (``LowGQX`` is deliberately
  absent, it discards calls that look good);
* GATK: ``LowQual``;
* DeepVariant: ``LowQual`` (``RefCall`` and ``NoCall`` are left alone).

A line is rejected when any of its ``;``-separated FILTER keys is in the
configured set. ``DEGENERATE_FORMATS`` lists FORMAT strings whose lines carry
no usable sample data, such as the GATK phasing-only lines.
"""

from __future__ import annotations

from typing import FrozenSet, Optional, Sequence, Tuple

DEFAULT_REJECTED_FILTERS: Tuple[str, ...] = ("LowDepth", "HighDPFRatio", "LowQual")

DEGENERATE_FORMATS: Tuple[str, ...] = ("GT:PGT:PID:PS",)


def prepare_rejected_filter_values(values: Optional[Sequence[str]]) -> Tuple[str, ...]:
    """Return a tuple of rejected FILTER keys, falling back to defaults when empty."""
    if values:
        return tuple(values)
    return DEFAULT_REJECTED_FILTERS


def prepare_rejected_filter_set(values: Optional[Sequence[str]]) -> FrozenSet[str]:
    """Normalize *values* and drop placeholders that mean "no filter" (``.``, ``PASS``, '')."""
    normalized = prepare_rejected_filter_values(values)
    return frozenset(v.strip() for v in normalized if v and v.strip() not in {"", ".", "PASS"})


__all__ = [
    "DEFAULT_REJECTED_FILTERS",
    "DEGENERATE_FORMATS",
    "prepare_rejected_filter_values",
    "prepare_rejected_filter_set",
]
