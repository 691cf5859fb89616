"""Tests for CLI commands."""

import math

import pytest
import yaml
from typer.testing import CliRunner

from pywelltest.cli.commands import app
from pywelltest.config import PyWellTestConfig
from pywelltest.export.json_export import load_analysis


runner = CliRunner()


@pytest.fixture
def radial_file(tmp_path):
    """Differential-pressure record following a semilog straight line."""
    path = tmp_path / "radial.txt"
    lines = ["time pressure"]
    for i in range(30):
        t = 10 ** (-2 + 4 * i / 29)
        lines.append(f"{t:.8g} {20.0 * (math.log(t) + 6.0):.8g}")
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def duplicate_time_file(tmp_path):
    path = tmp_path / "duplicates.txt"
    path.write_text("0.1 1.0\n0.2 2.0\n0.2 2.5\n0.4 3.0\n")
    return path


class TestModelsCommand:
    """Tests for the models command."""

    def test_lists_builtin_models(self):
        result = runner.invoke(app, ["models"])

        assert result.exit_code == 0
        assert "radial_flow:" in result.output
        assert "storage_radial:" in result.output
        assert "tau = 0.01" in result.output
        assert "central" in result.output


class TestInitCommand:
    """Tests for the init command."""

    def test_creates_config(self, tmp_path):
        path = tmp_path / "pywelltest.yaml"

        result = runner.invoke(app, ["init", "-o", str(path)])

        assert result.exit_code == 0
        assert "Created config file" in result.output
        assert PyWellTestConfig.from_yaml(path) == PyWellTestConfig()

    def test_existing_file_kept_when_declined(self, tmp_path):
        path = tmp_path / "pywelltest.yaml"
        path.write_text("# mine\n")

        result = runner.invoke(app, ["init", "-o", str(path)], input="n\n")

        assert result.exit_code == 0
        assert path.read_text() == "# mine\n"


class TestDerivativeCommand:
    """Tests for the derivative command."""

    def test_prints_csv(self, radial_file):
        result = runner.invoke(
            app, ["derivative", str(radial_file), "--skip-rows", "1", "--differential"]
        )

        assert result.exit_code == 0
        assert "time,pressure,derivative" in result.output

    def test_writes_csv(self, radial_file, tmp_path):
        output = tmp_path / "derivative.csv"

        result = runner.invoke(app, [
            "derivative", str(radial_file), "--skip-rows", "1", "--differential",
            "-L", "0.2", "-o", str(output),
        ])

        assert result.exit_code == 0
        lines = output.read_text().splitlines()
        assert lines[0] == "time,pressure,derivative"
        assert len(lines) == 31
        # Semilog straight line has a flat derivative equal to the slope
        assert float(lines[15].split(",")[2]) == pytest.approx(20.0, rel=1e-6)

    def test_negative_smoothing_rejected(self, radial_file):
        result = runner.invoke(
            app, ["derivative", str(radial_file), "--skip-rows", "1", "-L", "-1"]
        )

        assert result.exit_code == 1


class TestFitCommand:
    """Tests for the fit command."""

    def test_fit_and_save(self, radial_file, tmp_path):
        output = tmp_path / "analysis.json"

        result = runner.invoke(app, [
            "fit", str(radial_file), "-m", "radial_flow", "--skip-rows", "1",
            "--differential", "--no-progress", "-o", str(output),
        ])

        assert result.exit_code == 0, result.output
        assert "Fit Results" in result.output
        assert "Analysis saved to" in result.output

        state = load_analysis(output)
        assert state.model_id == "radial_flow"
        assert state.data.n_samples == 30
        assert state.parameters["m"].value == pytest.approx(20.0, rel=1e-3)
        assert state.fit_summary["status"] in {"converged", "diverged"}

    def test_unknown_model(self, radial_file):
        result = runner.invoke(app, [
            "fit", str(radial_file), "-m", "dual_porosity", "--skip-rows", "1",
            "--differential", "--no-progress",
        ])

        assert result.exit_code == 1

    def test_params_file_fixes_parameter(self, radial_file, tmp_path):
        params = tmp_path / "start.yaml"
        params.write_text(yaml.safe_dump({
            "parameters": {"s": {"value": 6.0, "fit": False}},
        }))

        result = runner.invoke(app, [
            "fit", str(radial_file), "-m", "radial_flow", "-p", str(params),
            "--skip-rows", "1", "--differential", "--no-progress",
        ])

        assert result.exit_code == 0, result.output
        assert "s: 6 (fixed)" in result.output

    def test_params_file_unknown_name(self, radial_file, tmp_path):
        params = tmp_path / "start.yaml"
        params.write_text("k: 100\n")

        result = runner.invoke(app, [
            "fit", str(radial_file), "-m", "radial_flow", "-p", str(params),
            "--skip-rows", "1", "--differential", "--no-progress",
        ])

        assert result.exit_code == 1
        assert "Unknown parameter" in result.output

    def test_invalid_weight(self, radial_file):
        result = runner.invoke(app, [
            "fit", str(radial_file), "--skip-rows", "1", "--differential",
            "--no-progress", "-w", "2.0",
        ])

        assert result.exit_code == 1


class TestValidateCommand:
    """Tests for the validate command."""

    def test_clean_file(self, radial_file):
        result = runner.invoke(app, ["validate", str(radial_file), "--skip-rows", "1"])

        assert result.exit_code == 0
        assert "Validation OK" in result.output

    def test_duplicate_times(self, duplicate_time_file):
        result = runner.invoke(app, ["validate", str(duplicate_time_file)])

        assert result.exit_code == 1
        assert "SD002" in result.output

    def test_parameter_file_checked(self, radial_file, tmp_path):
        params = tmp_path / "start.yaml"
        params.write_text("m:\n  value: 5.0\n  fit: false\ns:\n  value: 0.0\n  fit: false\n")

        result = runner.invoke(app, [
            "validate", str(radial_file), "--skip-rows", "1",
            "-m", "radial_flow", "-p", str(params),
        ])

        assert result.exit_code == 1
        assert "PS002" in result.output


class TestShowCommand:
    """Tests for the show command."""

    def test_show_saved_analysis(self, radial_file, tmp_path):
        output = tmp_path / "analysis.json"
        runner.invoke(app, [
            "fit", str(radial_file), "-m", "radial_flow", "--skip-rows", "1",
            "--differential", "--no-progress", "-o", str(output),
        ])

        result = runner.invoke(app, ["show", str(output)])

        assert result.exit_code == 0
        assert "Model: radial_flow" in result.output
        assert "Samples: 30" in result.output

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        result = runner.invoke(app, ["show", str(path)])

        assert result.exit_code == 1
