# catalog_engine/core/errors.py
"""
Typed domain errors. Lookup and validation failures are raised to the caller;
degraded-but-available outcomes (partial facets, empty recommendations) are
regular return values and never show up here.
"""


class CatalogError(Exception):
    """Base class for every error the engine surfaces."""


class NotFound(CatalogError):
    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class InvalidFilter(CatalogError):
    """Self-contradictory or malformed filter state, rejected before any query runs."""


class IntegrityError(CatalogError):
    """Stored data violates a structural invariant (e.g. a category cycle)."""


class ComputationTimeout(CatalogError):
    """A mandatory computation did not finish before its deadline."""


class DuplicateAssociation(CatalogError):
    def __init__(self, subject: str, value: str):
        super().__init__(f"{value!r} is already associated with {subject}")
        self.subject = subject
        self.value = value
