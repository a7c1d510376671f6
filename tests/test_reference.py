"""Cross-check of the fitted model against pyGAM (hif_gam/reference.py)"""
import numpy as np
import pytest

pytest.importorskip("pygam")

from hif_gam.reference import compare_with_pygam, r2_score  # noqa: E402


class TestR2Score:
    def test_perfect_fit(self):
        y = np.array([1.0, 2.0, 3.0])
        assert r2_score(y, y) == pytest.approx(1.0)

    def test_constant_response(self):
        assert r2_score(np.ones(4), np.zeros(4)) == 0.0


class TestCompareWithPygam:
    def test_linear_trend_agreement(self, linear_fit):
        ref = compare_with_pygam(linear_fit)
        assert ref.correlation > 0.99
        assert ref.rmse_between < 0.1
        assert ref.r2_model > 0.95
        assert "LinearGAM(s(0, n_splines=10) + f(1))" in ref.model_spec
        assert set(ref.as_dict()) == {
            "model_spec", "rmse_between", "correlation", "r2_model", "r2_reference", "reference_aicc", "reference_edof",
        }
