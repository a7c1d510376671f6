# Shared fixtures for hif_gam tests
import numpy as np
import pandas as pd
import pytest

from hif_gam.config import ModelConfig
from hif_gam.model import fit_gam
from hif_gam.synthetic import simulate_observations
from hif_gam.terms import ModelSpec, factor, random_effect, smooth


@pytest.fixture(scope="session")
def dolphins():
    """Six animals, three feeding sessions each, sampled every 10 min for 130 min."""
    return simulate_observations(n_animals=6, sessions_per_animal=3, seed=7)


@pytest.fixture(scope="session")
def dolphin_fit(dolphins):
    return fit_gam(dolphins, config=ModelConfig())


@pytest.fixture(scope="session")
def linear_trend():
    """20 observations over 2 animals with oxygen_cons = 2 + 0.05 * t."""
    rng = np.random.default_rng(3)
    times = np.linspace(0.0, 130.0, 10)
    rows = []
    for animal in ("A", "B"):
        for t in times:
            rows.append({"animal": animal, "exact": t, "oxygen_cons": 2.0 + 0.05 * t + rng.normal(0.0, 0.02)})
    df = pd.DataFrame(rows)
    df["animal"] = df["animal"].astype("category")
    return df


@pytest.fixture(scope="session")
def linear_spec():
    return ModelSpec(response="oxygen_cons", terms=(smooth("exact", k=10), random_effect("animal")))


@pytest.fixture(scope="session")
def linear_fit(linear_trend, linear_spec):
    return fit_gam(linear_trend, spec=linear_spec)


@pytest.fixture(scope="session")
def time_sex_spec():
    return ModelSpec(
        response="oxygen_cons",
        terms=(
            smooth("exact", k=10, by="percentdailytotal"),
            factor("sex"),
            random_effect("animal"),
        ),
    )


def _sessions(sexes, proportion, sex_shift, seed):
    rng = np.random.default_rng(seed)
    times = np.linspace(0.0, 130.0, 14)
    rows = []
    for i, sex in enumerate(sexes):
        offset = rng.normal(0.0, 0.05)
        for t in times:
            u = t / 40.0
            y = 1.5 + (sex_shift if sex == "M" else 0.0) + offset + 2.5 * proportion * u * np.exp(1.0 - u)
            rows.append(
                {
                    "animal": f"D{i + 1:02d}",
                    "sex": sex,
                    "exact": t,
                    "percentdailytotal": proportion,
                    "oxygen_cons": y + rng.normal(0.0, 0.03),
                }
            )
    df = pd.DataFrame(rows)
    df["animal"] = df["animal"].astype("category")
    df["sex"] = df["sex"].astype("category")
    return df


@pytest.fixture(scope="session")
def single_valued():
    """Every non-time covariate is constant: one sex, proportion fixed at 0.23."""
    return _sessions(["F", "F", "F"], proportion=0.23, sex_shift=0.0, seed=11)


@pytest.fixture(scope="session")
def two_sex_unequal():
    """Two males and four females with a clear sex shift."""
    return _sessions(["M", "M", "F", "F", "F", "F"], proportion=0.23, sex_shift=0.6, seed=12)
