"""Unit tests for hif_gam/model.py"""
import dataclasses

import numpy as np
import pandas as pd
import pytest

from hif_gam.config import ModelConfig
from hif_gam.data import load_observations
from hif_gam.errors import FitError
from hif_gam.model import GamFit, fit_gam, load_fit, save_fit
from hif_gam.terms import ModelSpec, factor, random_effect, smooth


class TestFitGam:
    """Tests for the penalized likelihood fit."""

    def test_fits_loaded_observations(self, tmp_path, dolphins):
        path = tmp_path / "obs.csv"
        dolphins.to_csv(path, index=False)
        loaded = load_observations(path)
        fit = fit_gam(loaded, config=ModelConfig(k_time=6))
        assert fit.terms.block("sex").term.levels == ["F", "M"]
        assert len(fit.terms.block("s(animal)").term.levels) == dolphins["animal"].nunique()
        assert np.all(np.isfinite(fit.coef))
        assert fit.scale > 0.0

    def test_does_not_mutate_input(self, dolphins):
        before = dolphins.copy(deep=True)
        fit_gam(dolphins, config=ModelConfig(k_time=6))
        pd.testing.assert_frame_equal(dolphins, before)

    def test_shapes(self, dolphin_fit, dolphins):
        p = dolphin_fit.terms.n_coef
        assert dolphin_fit.coef.shape == (p,)
        assert dolphin_fit.Vp.shape == (p, p)
        assert dolphin_fit.n == len(dolphins)
        assert len(dolphin_fit.coef_names) == p

    def test_edf_bounds(self, dolphin_fit):
        assert 2.0 <= dolphin_fit.edf <= dolphin_fit.terms.n_coef
        for label in ("s(exact):percentdailytotal", "s(age)", "s(pool_temp)", "s(animal)"):
            assert np.isfinite(dolphin_fit.term_edf(label))

    def test_covariance_symmetric_positive(self, dolphin_fit):
        np.testing.assert_allclose(dolphin_fit.Vp, dolphin_fit.Vp.T)
        assert np.all(np.diag(dolphin_fit.Vp) > 0.0)

    def test_residuals(self, dolphin_fit):
        np.testing.assert_allclose(dolphin_fit.fitted + dolphin_fit.residuals, dolphin_fit.y)
        assert dolphin_fit.scale > 0.0

    def test_explains_signal(self, dolphin_fit):
        y = dolphin_fit.y
        r2 = 1.0 - np.sum(dolphin_fit.residuals ** 2) / np.sum((y - y.mean()) ** 2)
        assert r2 > 0.5

    def test_predict_matches_fitted(self, dolphin_fit):
        fit, se = dolphin_fit.predict(dolphin_fit.data)
        np.testing.assert_allclose(fit, dolphin_fit.fitted)
        assert np.all(se > 0.0)

    def test_read_only(self, dolphin_fit):
        with pytest.raises(ValueError):
            dolphin_fit.coef[0] = 1.0
        with pytest.raises(dataclasses.FrozenInstanceError):
            dolphin_fit.scale = 1.0

    def test_smoothing_parameters(self, linear_fit):
        lam = linear_fit.smoothing_parameters()
        assert list(lam.index) == ["s(exact)[1]", "s(exact)[2]", "s(animal)[1]"]
        assert np.all(lam > 0.0)

    def test_reml(self, linear_trend, linear_spec):
        fit = fit_gam(linear_trend, spec=linear_spec, config=ModelConfig(method="REML"))
        assert fit.method == "REML"
        assert np.isfinite(fit.score)
        np.testing.assert_allclose(fit.fitted, linear_trend["oxygen_cons"], atol=0.1)

    def test_without_selection(self, linear_trend, linear_spec):
        fit = fit_gam(linear_trend, spec=linear_spec, config=ModelConfig(select=False))
        assert len(fit.lam) == 2

    def test_incomplete_rows_dropped(self, linear_trend, linear_spec):
        df = linear_trend.copy()
        df.loc[4, "oxygen_cons"] = np.nan
        fit = fit_gam(df, spec=linear_spec)
        assert fit.n_dropped == 1
        assert fit.n == len(df) - 1

    def test_missing_variable(self, dolphins):
        with pytest.raises(FitError, match="age"):
            fit_gam(dolphins.drop(columns=["age"]))

    def test_k_above_unique_values(self, linear_trend):
        spec = ModelSpec("oxygen_cons", (smooth("exact", k=12), random_effect("animal")))
        with pytest.raises(FitError):
            fit_gam(linear_trend, spec=spec)

    def test_rank_deficient_parametric_part(self, dolphins):
        df = dolphins.copy()
        df["sex2"] = df["sex"]
        spec = ModelSpec("oxygen_cons", (smooth("exact", k=6), factor("sex"), factor("sex2")))
        with pytest.raises(FitError, match="rank deficient"):
            fit_gam(df, spec=spec)

    def test_too_few_observations(self, linear_trend):
        spec = ModelSpec("oxygen_cons", (factor("animal"),))
        with pytest.raises(FitError):
            fit_gam(linear_trend.iloc[[0, 10]], spec=spec)


class TestPersistence:
    def test_round_trip(self, tmp_path, linear_fit):
        path = save_fit(linear_fit, tmp_path / "m" / "model.joblib")
        loaded = load_fit(path)
        assert isinstance(loaded, GamFit)
        np.testing.assert_allclose(loaded.coef, linear_fit.coef)
        np.testing.assert_allclose(loaded.predict(linear_fit.data)[0], linear_fit.fitted)

    def test_load_wrong_object(self, tmp_path):
        import joblib

        path = tmp_path / "other.joblib"
        joblib.dump({"a": 1}, path)
        with pytest.raises(TypeError):
            load_fit(path)
