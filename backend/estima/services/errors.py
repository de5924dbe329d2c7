"""
Error taxonomy for the persistence layer.

None of these reach UI code: adapters convert library failures into empty
results at their boundary, and the state machine turns ``SaveFailed`` into
``SaveStatus.SAVE_FAILED``.  A lookup that finds nothing is ``None``, not an
exception.
"""


class EstimaError(Exception):
    """Base class for Estima persistence errors."""


class StoreUnavailable(EstimaError):
    """The local store could not be opened; reads degrade, writes are skipped."""


class SaveFailed(EstimaError):
    """A project save did not complete; retried on the next debounce cycle."""
