"""End-to-end tests for hif_gam/pipeline.py, hif_gam/report.py and hif_gam/cli.py"""
import json

import pandas as pd
import pytest

from hif_gam.cli import main
from hif_gam.config import AnalysisConfig, DiagnosticsConfig
from hif_gam.errors import LoadError
from hif_gam.pipeline import run_analysis

TABLES = [
    "summary.txt",
    "parametric.csv",
    "smooths.csv",
    "anova.csv",
    "k_check.csv",
    "partial_effects.csv",
    "fixed_prediction.csv",
    "marginal_prediction.csv",
    "auc.csv",
    "results.json",
    "report.md",
]
FIGURES = ["partial_effects.png", "fixed_prediction.png", "marginal_prediction.png", "auc.png", "diagnostics.png"]


@pytest.fixture(scope="module")
def fast_config():
    return AnalysisConfig(diagnostics=DiagnosticsConfig(n_sim=60, n_rep=60))


@pytest.fixture(scope="module")
def data_csv(tmp_path_factory, dolphins):
    path = tmp_path_factory.mktemp("data") / "dolphins.csv"
    dolphins.to_csv(path, index=False)
    return path


class TestRunAnalysis:
    """Whole pipeline on the synthetic dataset."""

    def test_in_memory(self, data_csv, fast_config):
        result = run_analysis(data_csv, config=fast_config)
        assert result.outputs == {}
        assert result.figures == {}
        assert result.auc.total > 0.0
        assert result.auc.time.size == 131
        terms = {(pe.term, pe.var) for pe in result.partials}
        assert ("s(exact):percentdailytotal", "exact") in terms
        assert ("s(exact):percentdailytotal", "percentdailytotal") in terms
        assert ("s(animal)", "animal") in terms
        assert len(result.partials) == 5

    def test_writes_artifacts(self, tmp_path, data_csv, fast_config):
        logged = []
        result = run_analysis(
            data_csv, tmp_path, config=fast_config, save_model=True, log=lambda tag, msg: logged.append(tag)
        )
        for name in TABLES + FIGURES + ["model.joblib"]:
            assert (tmp_path / name).exists(), name
        assert set(result.figures) == {n[:-4] for n in FIGURES}
        assert {"LOAD", "FIT", "AUC", "WRITE"} <= set(logged)

        payload = json.loads((tmp_path / "results.json").read_text())
        assert payload["formula"] == result.summary.formula
        assert payload["auc_total"] == pytest.approx(result.auc.total)
        assert payload["marginal_covariates"]["sex"]["F"] == pytest.approx(2 / 3)
        assert "created_at_utc" in payload

        auc = pd.read_csv(tmp_path / "auc.csv")
        assert auc["auc"].iloc[0] == 0.0
        assert auc["auc"].iloc[-1] == pytest.approx(result.auc.total)

        report = (tmp_path / "report.md").read_text()
        assert "## Heat increment of feeding" in report
        assert "![auc](auc.png)" in report

    def test_no_plots(self, tmp_path, data_csv, fast_config):
        run_analysis(data_csv, tmp_path, config=fast_config, make_plots=False)
        assert (tmp_path / "report.md").exists()
        assert not list(tmp_path.glob("*.png"))

    def test_observed_grid(self, data_csv, dolphins, fast_config):
        result = run_analysis(data_csv, config=fast_config.with_grid(observed=True))
        assert result.marginal.x.size == dolphins["exact"].nunique()

    def test_missing_input(self, tmp_path):
        with pytest.raises(LoadError):
            run_analysis(tmp_path / "missing.xlsx", tmp_path)


class TestCli:
    """Tests for the hif-gam command line."""

    def test_simulate_then_run(self, tmp_path, capsys):
        data = tmp_path / "sim.csv"
        assert main(["simulate", str(data), "--animals", "5", "--sessions", "2", "--seed", "3"]) == 0
        assert len(pd.read_csv(data)) == 5 * 2 * 14

        cfg = tmp_path / "cfg.json"
        cfg.write_text(json.dumps({"diagnostics": {"n_sim": 40, "n_rep": 40}}))
        out = tmp_path / "out"
        code = main(
            ["run", str(data), "--out", str(out), "--config", str(cfg), "--grid-stop", "60", "--grid-step", "2",
             "--seed", "5", "--no-plots"]
        )
        assert code == 0
        captured = capsys.readouterr()
        assert "[FIT]" in captured.err
        assert "AUC total" in captured.out
        marginal = pd.read_csv(out / "marginal_prediction.csv")
        assert marginal["exact"].iloc[-1] == 60.0
        assert len(marginal) == 31
        saved = json.loads((out / "results.json").read_text())
        assert saved["config"]["diagnostics"]["seed"] == 5

    def test_missing_file_exit_status(self, tmp_path, capsys):
        assert main(["run", str(tmp_path / "nope.csv"), "--out", str(tmp_path / "out")]) == 1
        assert "error:" in capsys.readouterr().err

    def test_bad_config_exit_status(self, tmp_path, data_csv, capsys):
        cfg = tmp_path / "cfg.json"
        cfg.write_text(json.dumps({"model": {"knots": 3}}))
        assert main(["run", str(data_csv), "--config", str(cfg), "--out", str(tmp_path / "out")]) == 1
        assert "knots" in capsys.readouterr().err
