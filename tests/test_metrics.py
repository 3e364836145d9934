import logging

import numpy as np
import pytest

from nmr_calibration.analysis.fitting import fit_flip_angle
from nmr_calibration.analysis.metrics import (
    delta_te90,
    flip_ratio,
    rbc_to_tp,
    te90,
    wrap_phase_difference,
)
from nmr_calibration.analysis.models import flip_decay_model
from nmr_calibration.core.errors import DegenerateFitError
from nmr_calibration.core.types import FitResult, SpectralComponent, TimeSeries


def _dissolved_fit(rbc, tp, gas=SpectralComponent(1.0, -7400.0, 30.0)):
    observed = TimeSeries(np.zeros(4), 2e-5)
    return FitResult(
        components=[rbc, tp, gas],
        observed=observed,
        model_signal=np.zeros(4, dtype=complex),
        component_signals=np.zeros((3, 4), dtype=complex),
        labels=("rbc", "tp", "gas"),
    )


@pytest.mark.parametrize("delta_f", [1.0, 350.0, 700.0, 1e4])
def test_delta_te90_zero_at_ninety_degrees(delta_f):
    assert delta_te90(90.0, delta_f) == 0.0


def test_delta_te90_formula():
    assert delta_te90(45.0, 700.0) == pytest.approx(45.0 / (360.0 * 700.0))
    assert delta_te90(135.0, 700.0) < 0


@pytest.mark.parametrize("delta_f", [0.0, np.nan, np.inf])
def test_delta_te90_guards_zero_separation(delta_f):
    with pytest.raises(DegenerateFitError, match="not separated"):
        delta_te90(45.0, delta_f)


@pytest.mark.parametrize("delta_f", [1e-9, 0.5, -0.5])
def test_delta_te90_guards_near_zero_separation(delta_f):
    with pytest.raises(DegenerateFitError, match="not separated"):
        delta_te90(45.0, delta_f, min_separation=1.0)
    assert delta_te90(90.0, 1.0, min_separation=1.0) == 0.0


@pytest.mark.parametrize(
    "d", [-725.3, -360.0, -180.0, -45.0, 0.0, 45.0, 90.0, 179.9, 180.0, 359.0, 1000.5]
)
def test_phase_wrap_range_and_periodicity(d):
    wrapped = wrap_phase_difference(d)
    assert 0.0 <= wrapped < 180.0
    assert wrapped == pytest.approx(wrap_phase_difference(d + 360.0), abs=1e-9)


def test_phase_wrap_ignores_sign():
    assert wrap_phase_difference(45.0) == pytest.approx(45.0)
    assert wrap_phase_difference(-45.0) == pytest.approx(45.0)
    assert wrap_phase_difference(315.0) == pytest.approx(45.0)
    assert wrap_phase_difference(180.0) == pytest.approx(0.0)


def test_phase_wrap_folds_rounding_near_half_turn():
    d = -179.99999999999997
    assert wrap_phase_difference(d) == 0.0
    assert wrap_phase_difference(d + 360.0) == 0.0


def test_te90_from_dissolved_fit():
    fit = _dissolved_fit(
        SpectralComponent(0.8, 0.0, 250.0, 0.0, 0.0),
        SpectralComponent(2.0, -700.0, 200.0, 200.0, 45.0),
    )
    expected = 0.45 + 1e3 * 45.0 / (360.0 * 700.0)
    assert te90(0.45, fit) == pytest.approx(expected)


def test_te90_degenerate_when_peaks_coincide():
    fit = _dissolved_fit(
        SpectralComponent(1.0, -300.0, 250.0, 0.0, 0.0),
        SpectralComponent(1.0, -300.0, 200.0, 0.0, 30.0),
    )
    with pytest.raises(DegenerateFitError):
        te90(0.45, fit)


def test_te90_rejects_peaks_closer_than_minimum_separation():
    fit = _dissolved_fit(
        SpectralComponent(1.0, -300.0, 250.0, 0.0, 0.0),
        SpectralComponent(1.0, -300.5, 200.0, 0.0, 30.0),
    )
    with pytest.raises(DegenerateFitError, match="minimum 1.0 Hz"):
        te90(0.45, fit, min_separation=1.0)
    expected = 0.45 + 1e3 * 60.0 / (360.0 * 0.5)
    assert te90(0.45, fit, min_separation=0.1) == pytest.approx(expected)


def test_flip_ratio_is_one_for_exact_decay():
    k = np.arange(1, 21, dtype=float)
    fit = fit_flip_angle(flip_decay_model(k, 1.0, np.deg2rad(20.0), 0.0))
    assert flip_ratio(20.0, fit.flip_angle_deg) == pytest.approx(1.0, abs=1e-4)


def test_flip_ratio_guards_zero():
    with pytest.raises(DegenerateFitError):
        flip_ratio(20.0, 0.0)


def test_rbc_to_tp_is_signed(caplog):
    fit = _dissolved_fit(
        SpectralComponent(-0.5, 0.0, 250.0), SpectralComponent(1.0, -700.0, 200.0)
    )
    with caplog.at_level(logging.WARNING):
        ratio = rbc_to_tp(fit)
    assert ratio == pytest.approx(-0.5)
    assert "outside" in caplog.text


def test_rbc_to_tp_in_range_is_quiet(caplog):
    fit = _dissolved_fit(
        SpectralComponent(0.4, 0.0, 250.0), SpectralComponent(1.0, -700.0, 200.0)
    )
    with caplog.at_level(logging.WARNING):
        assert rbc_to_tp(fit) == pytest.approx(0.4)
    assert caplog.text == ""
