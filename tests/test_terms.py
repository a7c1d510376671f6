"""Unit tests for hif_gam/terms.py and hif_gam/basis.py"""
import warnings

import numpy as np
import pandas as pd
import pytest

from hif_gam.basis import bspline_transformer, diff_penalty, penalty_nullspace
from hif_gam.config import ModelConfig
from hif_gam.errors import FitError
from hif_gam.terms import RANDOM, SMOOTH, ModelSpec, TermSet, default_model_spec, factor, random_effect, smooth


class TestBasis:
    def test_transformer_width(self):
        tr = bspline_transformer(np.linspace(0, 1, 50), k=10)
        assert tr.transform(np.linspace(0, 1, 5).reshape(-1, 1)).shape == (5, 10)

    def test_k_below_cubic_minimum(self):
        with pytest.raises(ValueError):
            bspline_transformer(np.linspace(0, 1, 50), k=3)

    def test_second_order_penalty_nullspace(self):
        """Constant and linear coefficient sequences are unpenalized."""
        null = penalty_nullspace(diff_penalty(8, order=2))
        assert null.shape == (8, 2)


class TestModelSpec:
    """Tests for the symbolic model structure."""

    def test_default_formula(self):
        assert default_model_spec().formula == (
            "oxygen_cons ~ s(exact, by = percentdailytotal, k = 10) + s(age, k = 4) + sex"
            ' + s(pool_temp, k = 4) + s(animal, bs = "re")'
        )

    def test_labels(self):
        labels = [t.label for t in default_model_spec().terms]
        assert labels == ["s(exact):percentdailytotal", "s(age)", "sex", "s(pool_temp)", "s(animal)"]

    def test_k_from_config(self):
        spec = default_model_spec(ModelConfig(k_time=6, k_age=5))
        assert spec.term("s(exact):percentdailytotal").k == 6
        assert spec.term("s(age)").k == 5

    def test_variables(self):
        assert default_model_spec().variables == (
            "oxygen_cons", "exact", "percentdailytotal", "age", "sex", "pool_temp", "animal",
        )

    def test_unknown_term(self):
        with pytest.raises(KeyError):
            default_model_spec().term("s(weight)")


class TestTermSet:
    """Tests for design matrices and penalties."""

    def test_column_layout(self, dolphins):
        terms = TermSet.build(default_model_spec(), dolphins)
        # intercept + by-smooth (10) + age (3) + sex (1) + pool_temp (3) + animal (6)
        assert terms.n_coef == 24
        assert terms.coef_names()[0] == "(Intercept)"
        assert "sexM" in terms.coef_names()
        assert terms.model_matrix(dolphins).shape == (len(dolphins), 24)

    def test_penalty_count(self, dolphins):
        with_select = TermSet.build(default_model_spec(), dolphins, select=True)
        without = TermSet.build(default_model_spec(), dolphins, select=False)
        assert len(with_select.penalties) == 7
        assert len(without.penalties) == 4
        assert without.penalty_owner == ["s(exact):percentdailytotal", "s(age)", "s(pool_temp)", "s(animal)"]

    def test_centred_smooth(self, dolphins):
        terms = TermSet.build(default_model_spec(), dolphins)
        blk = terms.block("s(age)")
        x = terms.model_matrix(dolphins)[:, blk.cols]
        np.testing.assert_allclose(x.sum(axis=0), 0.0, atol=1e-8)

    def test_by_smooth_scales_with_by_variable(self, dolphins):
        terms = TermSet.build(default_model_spec(), dolphins)
        blk = terms.block("s(exact):percentdailytotal")
        frame = pd.DataFrame({"exact": [30.0, 30.0], "percentdailytotal": [0.1, 0.2]})
        rows = blk.term.design(frame)
        np.testing.assert_allclose(rows[1], 2.0 * rows[0])

    def test_random_effect_excluded(self, dolphins):
        terms = TermSet.build(default_model_spec(), dolphins)
        blk = terms.blocks_of_kind(RANDOM)[0]
        full = terms.model_matrix(dolphins)
        assert np.all(full[:, blk.cols].sum(axis=1) == 1.0)
        assert np.all(terms.model_matrix(dolphins, exclude_random=True)[:, blk.cols] == 0.0)

    def test_unknown_level(self, dolphins):
        terms = TermSet.build(default_model_spec(), dolphins)
        frame = dolphins.head(2).copy()
        frame["animal"] = frame["animal"].astype(str)
        frame.loc[frame.index[0], "animal"] = "D99"
        with pytest.raises(ValueError, match="D99"):
            terms.model_matrix(frame)

    def test_unknown_level_is_checked_before_coding(self, dolphins):
        terms = TermSet.build(default_model_spec(), dolphins)
        frame = dolphins.head(2).copy()
        frame["sex"] = frame["sex"].astype(str)
        frame.loc[frame.index[0], "sex"] = "X"
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            with pytest.raises(ValueError, match="Unknown level.*'sex': X"):
                terms.model_matrix(frame)

    def test_string_levels_match_categorical(self, dolphins):
        terms = TermSet.build(default_model_spec(), dolphins)
        frame = dolphins.copy()
        frame["sex"] = frame["sex"].astype(str)
        frame["animal"] = frame["animal"].astype(str)
        np.testing.assert_array_equal(terms.model_matrix(frame), terms.model_matrix(dolphins))

    def test_unused_categories_dropped(self, dolphins):
        frame = dolphins.copy()
        frame["sex"] = frame["sex"].cat.add_categories(["U"])
        frame["animal"] = frame["animal"].cat.add_categories(["D99"])
        terms = TermSet.build(default_model_spec(), frame)
        assert terms.block("sex").term.levels == ["F", "M"]
        assert "D99" not in terms.block("s(animal)").term.levels
        assert len(terms.block("s(animal)").term.levels) == dolphins["animal"].nunique()

    def test_too_few_unique_values(self, dolphins):
        spec = ModelSpec("oxygen_cons", (smooth("age", k=10),))
        with pytest.raises(FitError, match="unique"):
            TermSet.build(spec, dolphins)

    def test_k_below_minimum(self, dolphins):
        spec = ModelSpec("oxygen_cons", (smooth("exact", k=3),))
        with pytest.raises(FitError):
            TermSet.build(spec, dolphins)

    def test_factor_reference_level(self, dolphins):
        spec = ModelSpec("oxygen_cons", (factor("sex"), random_effect("animal")))
        terms = TermSet.build(spec, dolphins)
        blk = terms.block("sex")
        assert blk.term.levels == ["F", "M"]
        assert blk.n_coef == 1
        assert terms.blocks_of_kind(SMOOTH) == []
