"""
Analysis modules for Boston Neighborhood Change Project
"""

from .errors import (
    ReallocationError,
    ProjectionMismatch,
    InvalidGeometry,
    DuplicateKey,
    UndefinedValue,
    ConservationMismatch,
    KeyTypeMismatch,
    VariableKindError
)

from .reallocation import (
    compute_overlap_weights,
    reallocate,
    verify_conservation,
    check_conservation,
    describe_conservation
)

from .merge import (
    combine_vintages,
    dropped_ids
)
