"""Merge single-sample or multi-sample GVCFs into one multi-sample GVCF.

Importing the package immediately verifies that the runtime dependencies
:mod:`vcfpy` (header parsing) and :mod:`pysam` (BGZF compression and tabix
indexing) are available.
"""

from __future__ import annotations

__version__ = "1.0.0"


def _import_dependency(name: str):
    try:
        module = __import__(name)
    except ImportError as exc:  # pragma: no cover - exercised when dependency missing
        raise ModuleNotFoundError(
            f"The '{name}' package is required for the GVCF merger. "
            f"Please install it with 'pip install {name}'."
        ) from exc
    return module


vcfpy = _import_dependency("vcfpy")
pysam = _import_dependency("pysam")

from .logging_utils import (  # noqa: E402
    ConsistencyError,
    MalformedRecordError,
    MergeConflictError,
    MergeVCFError,
    configure_logging,
)
from .records import LineParser, Record, normalize_alleles  # noqa: E402
from .partition import Batch, BatchPartitioner, StreamCursor, split_block  # noqa: E402
from .merging import merge_batch, merge_stream_records  # noqa: E402
from .pipeline import AdaptiveBatchSizer, MergeOptions, MergePipeline, merge_streams  # noqa: E402

__all__ = [
    "__version__",
    "vcfpy",
    "pysam",
    "MergeVCFError",
    "MalformedRecordError",
    "ConsistencyError",
    "MergeConflictError",
    "configure_logging",
    "Record",
    "LineParser",
    "normalize_alleles",
    "Batch",
    "BatchPartitioner",
    "StreamCursor",
    "split_block",
    "merge_batch",
    "merge_stream_records",
    "AdaptiveBatchSizer",
    "MergeOptions",
    "MergePipeline",
    "merge_streams",
]
