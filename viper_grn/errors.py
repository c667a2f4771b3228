"""Exception and warning types raised by the enrichment core.

Structural problems (shapes, sizes, degenerate distributions) are raised as
exceptions and abort the run. Statistical edge cases that have a defined
fallback are reported with ``warnings.warn`` using the warning categories below.
"""


# ── Exceptions ────────────────────────────────────────────────────────────────

class InputShapeError(ValueError):
    """Signature and regulon cannot be aligned.

    Raised for duplicated gene identifiers, an empty sample dimension, or a
    signature that shares no genes with the regulon.
    """


class RegulonSizeError(ValueError):
    """Every regulator fell below the minimum regulon size."""


class DegenerateDistributionError(ValueError):
    """A column or null sample has no spread (constant or single-valued)."""


# ── Warnings ──────────────────────────────────────────────────────────────────

class NullModelInsufficiencyWarning(UserWarning):
    """Too few samples for a sample-permutation null model."""


class ConflictingOptionsWarning(UserWarning):
    """Mutually exclusive options were requested; one was disabled."""
