from dataclasses import asdict, dataclass, field
from enum import Enum
from functools import cached_property
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from nmr_calibration.core.config import CalibrationConfig
from nmr_calibration.core.errors import InvalidParameterError

# Per-component parameter order used by the model, the Jacobian and the solver.
PARAM_NAMES = ("amplitude", "frequency", "fwhm_l", "fwhm_g", "phase")
# Only the Lorentzian width is bounded; the model depends on fwhm_g squared.
BOUNDED_PARAMS = ("fwhm_l",)


class Resonance(str, Enum):
    RBC = "rbc"
    TISSUE_PLASMA = "tp"
    GAS = "gas"


# Guess slots of the dissolved fit: 0 is RBC, 1 tissue/plasma, 2 gas.
DISSOLVED_ORDER = (Resonance.RBC, Resonance.TISSUE_PLASMA, Resonance.GAS)


def wrap_phase(phase):
    """Wrap degrees into [-180, 180)."""
    return np.mod(np.asarray(phase, dtype=float) + 180.0, 360.0) - 180.0


def r_squared(y: np.ndarray, residuals: np.ndarray) -> float:
    """Coefficient of determination; complex data uses squared magnitudes."""
    ss_res = np.sum(np.abs(residuals) ** 2)
    ss_tot = np.sum(np.abs(y - np.mean(y)) ** 2)
    return float(1 - (ss_res / ss_tot)) if ss_tot != 0 else 0.0


@dataclass(frozen=True, eq=False)
class TimeSeries:
    """Complex FID samples on a uniform time grid."""

    samples: np.ndarray
    dwell_time: float

    def __post_init__(self):
        samples = np.array(self.samples, dtype=np.complex128)
        if samples.ndim != 1:
            raise InvalidParameterError(
                f"Time series must be one-dimensional, got shape {samples.shape}"
            )
        if not np.all(np.isfinite(samples)):
            raise InvalidParameterError("Time series contains non-finite samples")
        dwell = float(self.dwell_time)
        if not np.isfinite(dwell) or dwell <= 0:
            raise InvalidParameterError(f"Dwell time must be positive, got {dwell}")
        samples.setflags(write=False)
        object.__setattr__(self, "samples", samples)
        object.__setattr__(self, "dwell_time", dwell)

    def __len__(self) -> int:
        return self.samples.shape[0]

    @cached_property
    def time(self) -> np.ndarray:
        t = np.arange(len(self), dtype=float) * self.dwell_time
        t.setflags(write=False)
        return t


@dataclass(frozen=True)
class SpectralComponent:
    """
    One resonance: amplitude, frequency (Hz), Lorentzian and Gaussian FWHM (Hz)
    and phase (deg).
    """

    amplitude: float
    frequency: float
    fwhm_l: float
    fwhm_g: float = 0.0
    phase: float = 0.0

    def as_array(self) -> np.ndarray:
        return np.array([getattr(self, name) for name in PARAM_NAMES], dtype=float)

    @classmethod
    def from_array(cls, values) -> "SpectralComponent":
        return cls(*(float(v) for v in values))


@dataclass
class FitProblem:
    """
    Observed signal, ordered component guesses and solver options.

    Args:
        observed: Signal to fit.
        guesses: Initial values, one per component. Order is kept in the result.
        broadening: Extra line broadening (Hz) added to every Lorentzian width.
        fit_broadening: Let the solver adjust the shared broadening.
        fixed_params: Parameter names held at their guess for every component.
        bound_widths: Keep the Lorentzian linewidth non-negative.
        zero_pad: FFT length for display spectra. Never affects the fit.
        labels: Optional names for the components, same order as guesses.
    """

    observed: TimeSeries
    guesses: List[SpectralComponent]
    broadening: float = 0.0
    fit_broadening: bool = False
    fixed_params: Tuple[str, ...] = ()
    bound_widths: bool = True
    zero_pad: Optional[int] = None
    labels: Tuple[str, ...] = ()

    def validate(self) -> None:
        if len(self.guesses) < 1:
            raise InvalidParameterError("A fit problem needs at least one component")
        if len(self.observed) == 0:
            raise InvalidParameterError("Cannot fit an empty time series")
        unknown = set(self.fixed_params) - set(PARAM_NAMES)
        if unknown:
            raise InvalidParameterError(
                f"Unknown parameter names: {unknown}. Valid names: {PARAM_NAMES}"
            )
        if self.labels and len(self.labels) != len(self.guesses):
            raise InvalidParameterError("labels must match the number of guesses")
        if self.zero_pad is not None and self.zero_pad < 0:
            raise InvalidParameterError("zero_pad must be >= 0")
        if not np.isfinite(self.broadening):
            raise InvalidParameterError("broadening must be finite")
        for i, guess in enumerate(self.guesses):
            values = guess.as_array()
            if not np.all(np.isfinite(values)):
                raise InvalidParameterError(
                    f"Guess {i} has non-finite values: {guess}"
                )
            if guess.fwhm_l < 0 or guess.fwhm_g < 0:
                raise InvalidParameterError(
                    f"Guess {i} has a negative linewidth: {guess}"
                )

    def free_mask(self) -> np.ndarray:
        """Boolean mask over the packed vector: components, then broadening."""
        per_component = np.array(
            [name not in self.fixed_params for name in PARAM_NAMES]
        )
        mask = np.tile(per_component, len(self.guesses))
        return np.append(mask, self.fit_broadening)

    def initial_vector(self) -> np.ndarray:
        values = np.concatenate([g.as_array() for g in self.guesses])
        return np.append(values, self.broadening)

    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        size = len(self.guesses) * len(PARAM_NAMES) + 1
        lower = np.full(size, -np.inf)
        upper = np.full(size, np.inf)
        if self.bound_widths:
            for i, name in enumerate(PARAM_NAMES):
                if name in BOUNDED_PARAMS:
                    lower[i : size - 1 : len(PARAM_NAMES)] = 0.0
        return lower, upper


@dataclass
class FitResult:
    """Converged components plus the model signal; spectra are computed on demand."""

    components: List[SpectralComponent]
    observed: TimeSeries
    model_signal: np.ndarray
    component_signals: np.ndarray
    broadening: float = 0.0
    converged: bool = True
    message: str = ""
    nfev: int = 0
    zero_pad: Optional[int] = None
    labels: Tuple[str, ...] = ()

    def component(self, label) -> SpectralComponent:
        key = label.value if isinstance(label, Enum) else label
        if key not in self.labels:
            raise KeyError(f"No component labelled {key!r}; labels are {self.labels}")
        return self.components[self.labels.index(key)]

    @property
    def residuals(self) -> np.ndarray:
        return self.model_signal - self.observed.samples

    @property
    def cost(self) -> float:
        return float(np.sum(np.abs(self.residuals) ** 2))

    @property
    def r_squared(self) -> float:
        return r_squared(self.observed.samples, self.residuals)

    @property
    def n_fft(self) -> int:
        return max(self.zero_pad or 0, len(self.observed))

    @cached_property
    def frequency_axis(self) -> np.ndarray:
        return np.fft.fftshift(np.fft.fftfreq(self.n_fft, self.observed.dwell_time))

    @cached_property
    def observed_spectrum(self) -> np.ndarray:
        return self._to_spectrum(self.observed.samples)

    @cached_property
    def component_spectra(self) -> np.ndarray:
        return self._to_spectrum(self.component_signals)

    @cached_property
    def model_spectrum(self) -> np.ndarray:
        return np.sum(self.component_spectra, axis=0)

    def _to_spectrum(self, signal: np.ndarray) -> np.ndarray:
        spectrum = np.fft.fft(signal, n=self.n_fft, axis=-1)
        return self.observed.dwell_time * np.fft.fftshift(spectrum, axes=-1)


@dataclass
class FlipAngleFit:
    """Result of fitting y[k] = c1 * cos(c2)^(k-1) + c3 to peak gas magnitudes."""

    coefficients: Tuple[float, float, float]
    flip_angle_deg: float
    excitation: np.ndarray
    magnitudes: np.ndarray
    fit_curve: np.ndarray
    residuals: np.ndarray
    r_squared: float
    converged: bool = True
    message: str = ""


@dataclass(frozen=True)
class CalibrationResult:
    """Final calibration values handed back to the caller."""

    frequency_offset: float
    set_to_actual_flip: float
    te90: float
    rbc_to_tp: float
    actual_flip_angle: float
    converged: bool = True

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CalibrationAnalysis:
    """Calibration result together with the intermediate fits, for display."""

    result: CalibrationResult
    gas_fit: FitResult
    dissolved_fit: FitResult
    flip_fit: FlipAngleFit
    config: CalibrationConfig


@dataclass
class CalibrationData:
    """Dissolved and gas FID matrices, shaped (samples, acquisitions)."""

    disfids: np.ndarray
    gasfids: np.ndarray
    metadata: Dict[str, Any] = field(default_factory=dict)
    dwell_time: Optional[float] = None
