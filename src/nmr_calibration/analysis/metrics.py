import logging

import numpy as np

from nmr_calibration.core.config import CalibrationConfig
from nmr_calibration.core.errors import DegenerateFitError
from nmr_calibration.core.types import (
    CalibrationResult,
    FitResult,
    FlipAngleFit,
    Resonance,
    wrap_phase,
)

logger = logging.getLogger(__name__)

# Physiologically plausible RBC/TP band; values outside usually mean a poor fit.
RBC_TP_RANGE = (0.1, 0.7)

# Phase differences this close to 180 deg are folded to 0.
PHASE_SNAP_DEG = 1e-9


def wrap_phase_difference(delta_phase: float) -> float:
    """
    Fold a phase difference (deg) into [0, 180).
    Only the magnitude modulo 180 matters for the TE90 correction.
    """
    folded = float(np.mod(np.abs(wrap_phase(delta_phase)), 180.0))
    return 0.0 if folded >= 180.0 - PHASE_SNAP_DEG else folded


def delta_te90(
    delta_phase: float, delta_f: float, min_separation: float = 0.0
) -> float:
    """
    Echo-time correction in seconds.
    dTE90 = (90 - dphi) / (360 * df), dphi in degrees, df in Hz.
    Separations of zero or below min_separation (Hz) are rejected.
    """
    if not np.isfinite(delta_f) or delta_f == 0 or abs(delta_f) < min_separation:
        raise DegenerateFitError(
            f"RBC and tissue/plasma frequencies are not separated "
            f"(delta f = {delta_f} Hz, minimum {min_separation} Hz)"
        )
    return (90.0 - delta_phase) / (360.0 * delta_f)


def te90(
    echo_time_ms: float, dissolved_fit: FitResult, min_separation: float = 0.0
) -> float:
    """TE90 in ms from the RBC and tissue/plasma phase and frequency differences."""
    rbc = dissolved_fit.component(Resonance.RBC)
    tp = dissolved_fit.component(Resonance.TISSUE_PLASMA)
    delta_phase = wrap_phase_difference(rbc.phase - tp.phase)
    delta_f = abs(rbc.frequency - tp.frequency)
    return echo_time_ms + 1e3 * delta_te90(delta_phase, delta_f, min_separation)


def flip_ratio(prescribed_deg: float, actual_deg: float) -> float:
    if not np.isfinite(actual_deg) or actual_deg == 0:
        raise DegenerateFitError(f"Fitted flip angle is {actual_deg} degrees")
    return prescribed_deg / actual_deg


def rbc_to_tp(dissolved_fit: FitResult) -> float:
    """Signed RBC / tissue-plasma amplitude ratio."""
    rbc = dissolved_fit.component(Resonance.RBC)
    tp = dissolved_fit.component(Resonance.TISSUE_PLASMA)
    if tp.amplitude == 0:
        raise DegenerateFitError("Tissue/plasma amplitude is zero")
    ratio = rbc.amplitude / tp.amplitude
    if not RBC_TP_RANGE[0] <= ratio <= RBC_TP_RANGE[1]:
        logger.warning(
            "RBC/TP = %.3f is outside %s; check the dissolved fit",
            ratio,
            RBC_TP_RANGE,
        )
    return ratio


def compute_metrics(
    gas_fit: FitResult,
    flip_fit: FlipAngleFit,
    dissolved_fit: FitResult,
    config: CalibrationConfig,
) -> CalibrationResult:
    return CalibrationResult(
        frequency_offset=gas_fit.components[0].frequency,
        set_to_actual_flip=flip_ratio(config.flip_angle_deg, flip_fit.flip_angle_deg),
        te90=te90(
            config.echo_time_ms, dissolved_fit, config.min_frequency_separation_hz
        ),
        rbc_to_tp=rbc_to_tp(dissolved_fit),
        actual_flip_angle=flip_fit.flip_angle_deg,
        converged=gas_fit.converged and flip_fit.converged and dissolved_fit.converged,
    )
