"""
Exception taxonomy of the mesher.

All errors are deterministic functions of the configuration: none of them
is retried, and each carries enough context (layer, slice pair, radius
sample) to locate the fault.
"""

from typing import Optional, Sequence, Tuple


class MesherError(Exception):
    """Base class for all globemesh errors."""


class ConfigurationError(MesherError, ValueError):
    """Irreconcilable combination of parameters, detected before generation."""


class TopologyConsistencyError(MesherError, RuntimeError):
    """
    Shared-boundary mismatch between slices.

    Parameters
    ----------
    message : str
        Description of the mismatch
    ranks : sequence of int, optional
        Ranks of the offending slices (usually a pair)
    """

    def __init__(self, message: str, ranks: Optional[Sequence[int]] = None):
        self.ranks: Tuple[int, ...] = tuple(ranks) if ranks is not None else ()
        if self.ranks:
            message = f"{message} (slices {', '.join(map(str, self.ranks))})"
        super().__init__(message)


class ModelEvaluationError(MesherError, ValueError):
    """
    The reference Earth model returned unusable values for a table.

    Parameters
    ----------
    message : str
        Description of the failure
    radius : float, optional
        Radius (m) of the offending sample
    index : int, optional
        Table index of the offending sample
    """

    def __init__(
        self,
        message: str,
        radius: Optional[float] = None,
        index: Optional[int] = None,
    ):
        self.radius = radius
        self.index = index
        if index is not None:
            message = f"{message} at table index {index} (radius {radius:.1f} m)"
        super().__init__(message)
