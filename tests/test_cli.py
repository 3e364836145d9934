import h5py
from typer.testing import CliRunner

from nmr_calibration.cli.commands import app

from conftest import DWELL

runner = CliRunner()


def _write_file(path, disfids, gasfids):
    with h5py.File(path, "w") as f:
        f.create_dataset("disfids", data=disfids)
        f.create_dataset("gasfids", data=gasfids)
        f.attrs["dwell_time"] = DWELL


def test_analyze_prints_results(tmp_path, disfids, gasfids):
    file_path = tmp_path / "cal.h5"
    _write_file(file_path, disfids, gasfids)
    output_dir = tmp_path / "out"

    result = runner.invoke(
        app,
        [
            "analyze",
            str(file_path),
            "--no-plot",
            "--save-report",
            "--output-dir",
            str(output_dir),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Calibration Results" in result.output
    assert (output_dir / "results.json").exists()


def test_analyze_missing_file(tmp_path):
    result = runner.invoke(app, ["analyze", str(tmp_path / "nope.h5"), "--no-plot"])
    assert result.exit_code == 1
    assert "Failed to load" in result.output


def test_analyze_rejects_unknown_field(tmp_path, disfids, gasfids):
    file_path = tmp_path / "cal.h5"
    _write_file(file_path, disfids, gasfids)
    result = runner.invoke(
        app, ["analyze", str(file_path), "--field", "7", "--no-plot"]
    )
    assert result.exit_code == 1
    assert "No preset" in result.output


def test_presets_lists_field_strengths():
    result = runner.invoke(app, ["presets"])
    assert result.exit_code == 0
    assert "1.5" in result.output
    assert "3715" in result.output
