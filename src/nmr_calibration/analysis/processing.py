from typing import Tuple

import numpy as np

from nmr_calibration.core.errors import InvalidParameterError
from nmr_calibration.core.types import TimeSeries


def _as_fid_matrix(name: str, fids) -> np.ndarray:
    matrix = np.asarray(fids)
    if matrix.ndim != 2:
        raise InvalidParameterError(
            f"{name} must be 2-D (samples x acquisitions), got shape {matrix.shape}"
        )
    if matrix.shape[0] == 0 or matrix.shape[1] == 0:
        raise InvalidParameterError(f"{name} is empty: shape {matrix.shape}")
    if not np.issubdtype(matrix.dtype, np.number):
        raise InvalidParameterError(f"{name} must be numeric, got {matrix.dtype}")
    matrix = matrix.astype(np.complex128)
    if not np.all(np.isfinite(matrix)):
        raise InvalidParameterError(f"{name} contains non-finite samples")
    return matrix


def validate_fid_matrices(disfids, gasfids) -> Tuple[np.ndarray, np.ndarray]:
    """
    Check and convert the dissolved and gas FID matrices.

    Args:
        disfids: Dissolved FIDs, shaped (samples, acquisitions).
        gasfids: Gas FIDs, shaped (samples, acquisitions).

    Returns:
        Both matrices as complex128 arrays.
    """
    dis = _as_fid_matrix("disfids", disfids)
    gas = _as_fid_matrix("gasfids", gasfids)
    if dis.shape[0] != gas.shape[0]:
        raise InvalidParameterError(
            f"disfids and gasfids must have the same number of samples, "
            f"got {dis.shape[0]} and {gas.shape[0]}"
        )
    return dis, gas


def first_fid(fids: np.ndarray, dwell_time: float) -> TimeSeries:
    """First acquisition only."""
    return TimeSeries(fids[:, 0], dwell_time)


def average_fids(fids: np.ndarray, dwell_time: float) -> TimeSeries:
    """Sample-wise mean over acquisitions, to raise SNR."""
    return TimeSeries(np.mean(fids, axis=1), dwell_time)


def peak_magnitudes(fids: np.ndarray) -> np.ndarray:
    """Maximum magnitude of each acquisition, in acquisition order."""
    return np.max(np.abs(fids), axis=0)
