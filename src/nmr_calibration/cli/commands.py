import logging
from pathlib import Path
from typing import Optional

import matplotlib.pyplot as plt
import numpy as np
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from nmr_calibration.analysis.calibration import run_calibration
from nmr_calibration.core.config import FIELD_PRESETS, CalibrationConfig
from nmr_calibration.core.errors import CalibrationError
from nmr_calibration.core.types import CalibrationAnalysis
from nmr_calibration.io.loader import CalibrationLoader
from nmr_calibration.io.reporting import save_report

app = typer.Typer()
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Show fit details")
):
    """
    Calibration analysis for hyperpolarized 129Xe gas/dissolved spectroscopy.
    """
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@app.command()
def analyze(
    path: Path = typer.Argument(
        ..., help="HDF5 file holding 'disfids' and 'gasfids' (samples x acquisitions)."
    ),
    field: float = typer.Option(3.0, "--field", help="Field strength preset in tesla."),
    dwell_time: Optional[float] = typer.Option(
        None, "--dwell-time", help="Dwell time in seconds. Overrides file and preset."
    ),
    dis_key: str = typer.Option("disfids", help="Dataset name of the dissolved FIDs"),
    gas_key: str = typer.Option("gasfids", help="Dataset name of the gas FIDs"),
    strict: bool = typer.Option(
        False, "--strict", help="Fail when any fit does not converge."
    ),
    plot: bool = typer.Option(True, help="Show the calibration figure"),
    save_plots: bool = typer.Option(
        False, "--save-plots", help="Save the figure to the output directory"
    ),
    save: bool = typer.Option(
        False, "--save-report", help="Save JSON/CSV results to the output directory"
    ),
    output_dir: Path = typer.Option(
        Path("output"), "--output-dir", help="Directory for saved plots and reports"
    ),
):
    """
    Fit the gas and dissolved FIDs and report frequency, flip angle, TE90 and RBC/TP.
    """
    console.print(f"Loading {path}...")
    try:
        data = CalibrationLoader(dis_key=dis_key, gas_key=gas_key).load(path)
    except (FileNotFoundError, ValueError, OSError) as e:
        console.print(f"[red]Failed to load {path}: {e}[/red]")
        raise typer.Exit(1)

    overrides = {"strict_convergence": strict}
    if dwell_time is not None:
        overrides["dwell_time"] = dwell_time
    elif data.dwell_time is not None:
        overrides["dwell_time"] = data.dwell_time

    try:
        config = CalibrationConfig.for_field_strength(field, **overrides)
        console.print("Fitting gas and dissolved FIDs...")
        analysis = run_calibration(data.disfids, data.gasfids, config)
    except CalibrationError as e:
        console.print(f"[red]Calibration failed: {e}[/red]")
        raise typer.Exit(1)

    print_result(analysis)

    if save:
        save_report(analysis, output_dir)
        console.print(f"[green]Report saved to {output_dir}[/green]")

    if plot or save_plots:
        filepath = None
        if save_plots:
            output_dir.mkdir(parents=True, exist_ok=True)
            filepath = output_dir / f"{path.stem}_calibration.png"
            console.print(f"Saving plot to {filepath}")
        plot_calibration(analysis, filepath=filepath)


@app.command()
def presets():
    """
    List the protocol presets per field strength.
    """
    table = Table(title="Calibration Presets")
    table.add_column("Field (T)", style="cyan")
    table.add_column("TE (ms)", style="magenta")
    table.add_column("Dissolved offset (Hz)", style="magenta")
    table.add_column("Frequency guesses (Hz)", style="magenta")

    for field_strength in sorted(FIELD_PRESETS):
        config = CalibrationConfig.for_field_strength(field_strength)
        table.add_row(
            f"{field_strength:.1f}",
            f"{config.echo_time_ms:.2f}",
            f"{config.dissolved_offset_hz:.0f}",
            ", ".join(f"{f:.0f}" for f in config.dissolved_freq_guesses),
        )
    console.print(table)


def print_result(analysis: CalibrationAnalysis):
    result = analysis.result
    config = analysis.config

    table = Table(title="Calibration Results")
    table.add_column("Parameter", style="cyan")
    table.add_column("Value", style="magenta")

    table.add_row("Gas Frequency Offset (Hz)", f"{result.frequency_offset:.0f}")
    table.add_row("Prescribed Flip Angle (deg)", f"{config.flip_angle_deg:.0f}")
    table.add_row("Actual Flip Angle (deg)", f"{result.actual_flip_angle:.1f}")
    table.add_row("Ratio Prescribed/Actual", f"{result.set_to_actual_flip:.3f}")
    table.add_row("TE90 (ms)", f"{result.te90:.2f}")
    table.add_row("RBC/TP", f"{result.rbc_to_tp:.2f}")
    table.add_row("Dissolved Offset (Hz)", f"{config.dissolved_offset_hz:.0f}")
    table.add_row("Dissolved Fit R-Squared", f"{analysis.dissolved_fit.r_squared:.4f}")
    console.print(table)

    if not result.converged:
        console.print("[yellow]Warning: at least one fit did not converge.[/yellow]")


def plot_calibration(analysis: CalibrationAnalysis, filepath: Optional[Path] = None):
    """
    Plot gas decay with its fit (left) and dissolved spectrum with the fit (right).
    """
    result = analysis.result
    flip = analysis.flip_fit
    dissolved = analysis.dissolved_fit

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(15, 6))

    # --- Plot 1: Gas decay ---
    ax1.plot(flip.excitation, flip.magnitudes, "bo", label="Peak Magnitude")
    ax1.plot(flip.excitation, flip.fit_curve, "-r", label="Fit")
    ax1.set_xlabel("FID Number")
    ax1.set_ylabel("Magnitude")
    ax1.set_title("Decay of Gas Signal")
    ax1.legend(loc="lower left")
    ax1.text(
        0.95,
        0.95,
        "\n".join(
            [
                f"Gas Frequency Offset = {result.frequency_offset:.0f} Hz",
                f"Prescribed Flip Angle = {analysis.config.flip_angle_deg:.0f}°",
                f"Actual Flip Angle = {result.actual_flip_angle:.1f}°",
                f"Ratio Prescribed/Actual = {result.set_to_actual_flip:.3f}",
            ]
        ),
        transform=ax1.transAxes,
        ha="right",
        va="top",
        bbox=dict(facecolor="white"),
    )

    # --- Plot 2: Dissolved spectrum ---
    ax2.plot(
        dissolved.frequency_axis, np.abs(dissolved.observed_spectrum), "k", label="Data"
    )
    ax2.plot(
        dissolved.frequency_axis,
        np.abs(dissolved.model_spectrum),
        color="blue",
        alpha=0.33,
        linewidth=3,
        label="Fit",
    )
    ax2.set_xlim(-10000, 5000)
    ax2.invert_xaxis()
    ax2.set_xlabel("Frequency (Hz)")
    ax2.set_ylabel("NMR Signal (a.u.)")
    ax2.set_title("Dissolved Phase Spectrum and Fit")
    ax2.legend(loc="upper left")
    ax2.text(
        0.95,
        0.95,
        f"TE90 = {result.te90:.2f} ms\nRBC/TP = {result.rbc_to_tp:.2f}",
        transform=ax2.transAxes,
        ha="right",
        va="top",
        bbox=dict(facecolor="white"),
    )

    plt.tight_layout()
    if filepath:
        plt.savefig(filepath)
        plt.close()
    else:
        plt.show()


if __name__ == "__main__":
    app()
