from typing import Sequence

import numpy as np
from numba import jit

from nmr_calibration.core.errors import InvalidParameterError
from nmr_calibration.core.types import PARAM_NAMES, SpectralComponent

# Gaussian FWHM (Hz) to time-domain decay constant: exp(-t^2 * GAUSS_FACTOR * fwhm^2)
GAUSS_FACTOR = np.pi**2 / (4.0 * np.log(2.0))


@jit(nopython=True)
def gaussian_decay_rate(fwhm_g):
    return GAUSS_FACTOR * fwhm_g**2


@jit(nopython=True)
def fid_component(t, amplitude, frequency, fwhm_l, fwhm_g, phase, broadening):
    """
    Single damped resonance (Voigt when fwhm_g > 0).
    S(t) = A * exp(i*phase) * exp(i*2*pi*f*t) * exp(-pi*(L + lb)*t) * exp(-k(G)*t^2)
    Phase is in degrees.
    """
    return (
        amplitude
        * np.exp(1j * phase * np.pi / 180.0)
        * np.exp(1j * 2.0 * np.pi * frequency * t)
        * np.exp(-t * np.pi * (fwhm_l + broadening))
        * np.exp(-(t**2) * gaussian_decay_rate(fwhm_g))
    )


@jit(nopython=True)
def fid_signal(t, params, broadening):
    """Sum of components; params has one row per component in PARAM_NAMES order."""
    signal = np.zeros(t.shape[0], dtype=np.complex128)
    for k in range(params.shape[0]):
        signal += fid_component(
            t,
            params[k, 0],
            params[k, 1],
            params[k, 2],
            params[k, 3],
            params[k, 4],
            broadening,
        )
    return signal


@jit(nopython=True)
def fid_jacobian(t, params, broadening):
    """
    Complex derivative of fid_signal.
    Columns follow the packed vector: 5 per component, then the shared broadening.
    """
    n_comp = params.shape[0]
    jac = np.empty((t.shape[0], n_comp * 5 + 1), dtype=np.complex128)
    d_broadening = np.zeros(t.shape[0], dtype=np.complex128)
    for k in range(n_comp):
        amplitude = params[k, 0]
        fwhm_g = params[k, 3]
        unit = fid_component(
            t, 1.0, params[k, 1], params[k, 2], fwhm_g, params[k, 4], broadening
        )
        signal = amplitude * unit
        col = k * 5
        jac[:, col] = unit
        jac[:, col + 1] = 2j * np.pi * t * signal
        jac[:, col + 2] = -np.pi * t * signal
        jac[:, col + 3] = -2.0 * GAUSS_FACTOR * fwhm_g * t**2 * signal
        jac[:, col + 4] = 1j * np.pi / 180.0 * signal
        d_broadening += -np.pi * t * signal
    jac[:, n_comp * 5] = d_broadening
    return jac


@jit(nopython=True)
def flip_decay_model(k, c1, c2, c3):
    """
    Gas signal after repeated excitations.
    y(k) = c1 * cos(c2)^(k - 1) + c3, c2 in radians, k starting at 1.
    """
    return c1 * np.cos(c2) ** (k - 1.0) + c3


def component_matrix(components: Sequence[SpectralComponent]) -> np.ndarray:
    if len(components) == 0:
        return np.zeros((0, len(PARAM_NAMES)))
    return np.array([c.as_array() for c in components])


def synthesize(
    t: np.ndarray, components: Sequence[SpectralComponent], broadening: float = 0.0
) -> np.ndarray:
    """
    Synthesize a complex FID from spectral components.

    Args:
        t: Time stamps in seconds.
        components: Resonances to sum.
        broadening: Extra Lorentzian broadening (Hz) applied to every component.

    Returns:
        Complex signal with the same length as t.
    """
    t = np.asarray(t, dtype=float)
    params = component_matrix(components)
    if not np.all(np.isfinite(params)) or not np.isfinite(broadening):
        raise InvalidParameterError("Component parameters must be finite")
    if np.any(params[:, 2:4] < 0):
        raise InvalidParameterError("Linewidths must be non-negative")
    if t.size == 0:
        return np.zeros(0, dtype=np.complex128)
    return fid_signal(t, params, float(broadening))
