import json
from pathlib import Path

import numpy as np
import pandas as pd

from nmr_calibration.core.types import CalibrationAnalysis


def save_report(analysis: CalibrationAnalysis, output_dir: Path):
    """
    Save calibration results to the output directory.
    - results.json: Calibration values and fitted components.
    - flip_decay.csv: Gas peak magnitudes and the decay fit.
    - dissolved_spectrum.csv: Dissolved spectrum and per-component fits.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report_data = {
        "result": analysis.result.as_dict(),
        "gas_fit": {
            "components": [vars(c) for c in analysis.gas_fit.components],
            "converged": analysis.gas_fit.converged,
        },
        "dissolved_fit": {
            "labels": list(analysis.dissolved_fit.labels),
            "components": [vars(c) for c in analysis.dissolved_fit.components],
            "converged": analysis.dissolved_fit.converged,
            "r_squared": analysis.dissolved_fit.r_squared,
        },
        "flip_fit": {
            "coefficients": list(analysis.flip_fit.coefficients),
            "flip_angle_deg": analysis.flip_fit.flip_angle_deg,
            "r_squared": analysis.flip_fit.r_squared,
            "converged": analysis.flip_fit.converged,
        },
        "config": vars(analysis.config),
    }

    with open(output_dir / "results.json", "w") as f:
        json.dump(report_data, f, indent=4, default=_to_json)

    flip = analysis.flip_fit
    pd.DataFrame(
        {
            "excitation": flip.excitation,
            "magnitude": flip.magnitudes,
            "fit": flip.fit_curve,
        }
    ).to_csv(output_dir / "flip_decay.csv", index=False)

    dissolved = analysis.dissolved_fit
    spectrum = {
        "frequency_hz": dissolved.frequency_axis,
        "observed": np.abs(dissolved.observed_spectrum),
        "fit": np.abs(dissolved.model_spectrum),
    }
    for label, component in zip(dissolved.labels, dissolved.component_spectra):
        spectrum[f"fit_{label}"] = np.abs(component)
    pd.DataFrame(spectrum).to_csv(output_dir / "dissolved_spectrum.csv", index=False)


def _to_json(value):
    if isinstance(value, np.generic):
        return value.item()
    raise TypeError(f"Cannot serialise {type(value).__name__}")
