from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

import numpy as np

from nmr_calibration.core.errors import InvalidParameterError


@dataclass(frozen=True)
class CalibrationConfig:
    """
    Protocol constants for the calibration analysis.

    Defaults follow the 3T recommendations for 129Xe calibration scans.

    Attributes:
        dwell_time: Sample spacing of every FID, in seconds.
        echo_time_ms: Nominal echo time of the dissolved acquisition, in ms.
        flip_angle_deg: Prescribed flip angle, in degrees.
        dissolved_offset_hz: Dissolved-phase frequency offset set on the scanner.
        dissolved_freq_guesses: Initial frequencies (Hz) for RBC, tissue/plasma, gas.
        gas_zero_pad: FFT length used to display the gas fit.
        flip_angle_guess_deg: Initial guess for the flip-angle decay fit.
        bound_widths: Keep fitted Lorentzian linewidths non-negative.
        bound_flip_angle: Constrain the fitted flip angle to [0, 90] degrees.
        strict_convergence: Raise NonConvergenceError instead of warning.
        max_nfev: Solver evaluation budget (None lets scipy choose).
        min_frequency_separation_hz: Smallest RBC to tissue/plasma separation (Hz)
            accepted for the TE90 correction; closer peaks raise DegenerateFitError.
    """

    dwell_time: float = 39e-6 / 2
    echo_time_ms: float = 0.45
    flip_angle_deg: float = 20.0
    dissolved_offset_hz: float = 7430.0
    dissolved_freq_guesses: Tuple[float, float, float] = (0.0, -700.0, -7400.0)
    gas_zero_pad: int = 10000
    flip_angle_guess_deg: float = 15.0
    bound_widths: bool = True
    bound_flip_angle: bool = False
    strict_convergence: bool = False
    max_nfev: Optional[int] = None
    min_frequency_separation_hz: float = 1.0

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        positive = (
            "dwell_time",
            "echo_time_ms",
            "flip_angle_deg",
            "flip_angle_guess_deg",
        )
        for name in positive:
            value = getattr(self, name)
            if not np.isfinite(value) or value <= 0:
                raise InvalidParameterError(
                    f"{name} must be positive and finite, got {value}"
                )
        if not np.isfinite(self.dissolved_offset_hz):
            raise InvalidParameterError("dissolved_offset_hz must be finite")
        if len(self.dissolved_freq_guesses) != 3:
            raise InvalidParameterError(
                "dissolved_freq_guesses needs one value for RBC, tissue/plasma and gas"
            )
        if not np.all(np.isfinite(self.dissolved_freq_guesses)):
            raise InvalidParameterError("dissolved_freq_guesses must be finite")
        if self.gas_zero_pad < 0:
            raise InvalidParameterError("gas_zero_pad must be >= 0")
        if self.max_nfev is not None and self.max_nfev < 1:
            raise InvalidParameterError("max_nfev must be >= 1")
        sep = self.min_frequency_separation_hz
        if not np.isfinite(sep) or sep < 0:
            raise InvalidParameterError(
                f"min_frequency_separation_hz must be >= 0 and finite, got {sep}"
            )

    @classmethod
    def for_field_strength(
        cls, field_strength: float, **overrides
    ) -> "CalibrationConfig":
        """Build a config from the preset for a field strength in tesla."""
        key = float(field_strength)
        if key not in FIELD_PRESETS:
            raise InvalidParameterError(
                f"No preset for {field_strength} T. Available: {sorted(FIELD_PRESETS)}"
            )
        values = dict(FIELD_PRESETS[key])
        values.update(overrides)
        return cls(**values)

    def with_overrides(self, **overrides) -> "CalibrationConfig":
        return replace(self, **overrides)


FIELD_PRESETS: Dict[float, Dict[str, object]] = {
    3.0: {
        "echo_time_ms": 0.45,
        "dissolved_offset_hz": 7430.0,
        "dissolved_freq_guesses": (0.0, -700.0, -7400.0),
    },
    1.5: {
        "echo_time_ms": 0.8,
        "dissolved_offset_hz": 3715.0,
        "dissolved_freq_guesses": (0.0, -350.0, -3700.0),
    },
}
