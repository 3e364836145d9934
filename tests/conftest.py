import numpy as np
import pytest

from nmr_calibration.analysis.models import synthesize
from nmr_calibration.core.types import SpectralComponent

DWELL = 39e-6 / 2
N_POINTS = 512

GAS_AMPLITUDE = 1e-2
GAS_FREQUENCY = 50.0
GAS_FWHM = 25.0
ACTUAL_FLIP_DEG = 12.0

RBC = SpectralComponent(
    amplitude=0.8, frequency=0.0, fwhm_l=250.0, fwhm_g=0.0, phase=0.0
)
TP = SpectralComponent(
    amplitude=2.0, frequency=-700.0, fwhm_l=200.0, fwhm_g=200.0, phase=45.0
)
GAS = SpectralComponent(
    amplitude=3.0, frequency=-7400.0, fwhm_l=30.0, fwhm_g=0.0, phase=0.0
)


@pytest.fixture
def time_axis():
    return np.arange(N_POINTS) * DWELL


@pytest.fixture
def gasfids(time_axis):
    # 8 acquisitions, each depleted by cos(12 deg)
    columns = []
    for k in range(8):
        amplitude = GAS_AMPLITUDE * np.cos(np.deg2rad(ACTUAL_FLIP_DEG)) ** k
        component = SpectralComponent(amplitude, GAS_FREQUENCY, GAS_FWHM)
        columns.append(synthesize(time_axis, [component]))
    return np.column_stack(columns)


@pytest.fixture
def disfids(time_axis):
    fid = synthesize(time_axis, [RBC, TP, GAS])
    # scale factors average to 1 so the mean FID equals fid
    return np.column_stack([fid * s for s in (1.0, 0.9, 1.1, 1.0)])
