import logging
from typing import Optional

import numpy as np
from scipy.optimize import least_squares

from nmr_calibration.analysis.models import (
    fid_component,
    fid_jacobian,
    fid_signal,
    flip_decay_model,
)
from nmr_calibration.core.errors import InvalidParameterError
from nmr_calibration.core.types import (
    PARAM_NAMES,
    FitProblem,
    FitResult,
    FlipAngleFit,
    SpectralComponent,
    r_squared,
    wrap_phase,
)

logger = logging.getLogger(__name__)


def _solve(fun, x0, jac, lower, upper, bounded: bool, max_nfev: Optional[int]):
    # Levenberg-Marquardt when nothing is bounded, trust-region reflective otherwise.
    if bounded:
        return least_squares(
            fun,
            x0,
            jac=jac,
            bounds=(lower, upper),
            method="trf",
            x_scale="jac",
            max_nfev=max_nfev,
        )
    return least_squares(
        fun, x0, jac=jac, method="lm", x_scale="jac", max_nfev=max_nfev
    )


def fit_time_domain(problem: FitProblem, max_nfev: Optional[int] = None) -> FitResult:
    """
    Fit a sum of damped complex resonances to an observed FID.

    The complex residual (model - observed) is split into real and imaginary
    parts so a real least-squares solver can minimise it. Parameters listed in
    problem.fixed_params stay at their guesses; the shared broadening is only
    adjusted when problem.fit_broadening is set.

    Args:
        problem: Observed signal, guesses and solver options.
        max_nfev: Solver evaluation budget. None lets scipy pick its default.

    Returns:
        FitResult with converged components. When the budget runs out the
        best parameters found so far are returned with converged=False.
    """
    problem.validate()
    t = np.array(problem.observed.time)
    observed = np.array(problem.observed.samples)
    n_comp = len(problem.guesses)
    n_names = len(PARAM_NAMES)

    packed = problem.initial_vector()
    free = problem.free_mask()
    if not np.any(free):
        raise InvalidParameterError("Every parameter is fixed, nothing to fit")
    lower, upper = problem.bounds()
    lower, upper = lower[free], upper[free]
    bounded = bool(np.any(np.isfinite(lower)) or np.any(np.isfinite(upper)))
    if not bounded and 2 * observed.size < np.count_nonzero(free):
        raise InvalidParameterError(
            f"{np.count_nonzero(free)} free parameters but only {observed.size} samples"
        )

    def unpack(x):
        values = packed.copy()
        values[free] = x
        return values[:-1].reshape(n_comp, n_names), values[-1]

    def residuals(x):
        params, broadening = unpack(x)
        diff = fid_signal(t, params, broadening) - observed
        return np.concatenate((diff.real, diff.imag))

    def jacobian(x):
        params, broadening = unpack(x)
        jac = fid_jacobian(t, params, broadening)[:, free]
        return np.vstack((jac.real, jac.imag))

    solution = _solve(
        residuals, packed[free], jacobian, lower, upper, bounded, max_nfev
    )
    params, broadening = unpack(solution.x)
    converged = solution.status > 0
    if not converged:
        logger.warning(
            "Time-domain fit of %d component(s) did not converge "
            "after %d evaluations: %s",
            n_comp,
            solution.nfev,
            solution.message,
        )

    # sign of the Gaussian width is not identifiable
    params[:, 3] = np.abs(params[:, 3])
    params[:, 4] = wrap_phase(params[:, 4])
    component_signals = np.array(
        [fid_component(t, *params[k], broadening) for k in range(n_comp)]
    )
    components = [SpectralComponent.from_array(row) for row in params]
    logger.debug("Fitted components: %s", components)

    return FitResult(
        components=components,
        observed=problem.observed,
        model_signal=np.sum(component_signals, axis=0),
        component_signals=component_signals,
        broadening=float(broadening),
        converged=converged,
        message=solution.message,
        nfev=int(solution.nfev),
        zero_pad=problem.zero_pad,
        labels=tuple(problem.labels),
    )


def fit_flip_angle(
    magnitudes: np.ndarray,
    initial_flip_deg: float = 15.0,
    bounded: bool = False,
    max_nfev: Optional[int] = None,
) -> FlipAngleFit:
    """
    Fit the decay of peak gas magnitudes across excitations.
    y(k) = c1 * cos(c2)^(k - 1) + c3

    The reported flip angle is arccos(cos(c2)) in degrees, which removes the
    sign and 2*pi ambiguity of c2 that the model cannot resolve.
    """
    y = np.asarray(magnitudes, dtype=float).ravel()
    if y.size < 3:
        raise InvalidParameterError(
            f"Flip-angle fit needs at least 3 acquisitions, got {y.size}"
        )
    if not np.all(np.isfinite(y)):
        raise InvalidParameterError("Gas magnitudes contain non-finite values")

    excitation = np.arange(1, y.size + 1, dtype=float)
    p0 = np.array([np.max(y), np.deg2rad(initial_flip_deg), 0.0])
    lower = np.array([-np.inf, 0.0, -np.inf])
    upper = np.array([np.inf, np.pi / 2, np.inf])
    if bounded:
        p0[1] = np.clip(p0[1], lower[1], upper[1])

    def residuals(c):
        return flip_decay_model(excitation, c[0], c[1], c[2]) - y

    solution = _solve(residuals, p0, "2-point", lower, upper, bounded, max_nfev)
    c1, c2, c3 = (float(v) for v in solution.x)
    converged = solution.status > 0
    if not converged:
        logger.warning(
            "Flip-angle decay fit did not converge after %d evaluations: %s",
            solution.nfev,
            solution.message,
        )

    fit_curve = flip_decay_model(excitation, c1, c2, c3)
    fit_residuals = y - fit_curve
    flip_angle = float(np.degrees(np.arccos(np.clip(np.cos(c2), -1.0, 1.0))))

    return FlipAngleFit(
        coefficients=(c1, c2, c3),
        flip_angle_deg=flip_angle,
        excitation=excitation,
        magnitudes=y,
        fit_curve=fit_curve,
        residuals=fit_residuals,
        r_squared=r_squared(y, fit_residuals),
        converged=converged,
        message=solution.message,
    )
