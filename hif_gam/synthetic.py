from __future__ import annotations

import numpy as np
import pandas as pd

from .config import (
    AGE_COL,
    KCAL_COL,
    POOL_TEMP_COL,
    PROPORTION_COL,
    RESPONSE_COL,
    SEX_COL,
    SUBJECT_COL,
    TIME_COL,
)

DAILY_KCAL = 30000.0
HIF_PEAK_MIN = 40.0


def hif_curve(t):
    """Rise-and-decay shape of the heat increment of feeding; 1.0 at the peak."""
    u = np.asarray(t, dtype=float) / HIF_PEAK_MIN
    return u * np.exp(1.0 - u)


def simulate_observations(
    n_animals: int = 6,
    sessions_per_animal: int = 3,
    times=None,
    male_fraction: float = 1.0 / 3.0,
    noise_sd: float = 0.08,
    seed: int = 20260301,
) -> pd.DataFrame:
    """
    Simulates post-feeding respirometry trials.

    Each animal is measured over several feeding sessions; every session has
    its own meal size (proportion of daily intake) and pool temperature, and
    oxygen consumption is sampled at the given minutes after feeding.

    Returns:
        DataFrame with the eight observation columns, animal and sex categorical.
    """
    rng = np.random.default_rng(seed)
    if times is None:
        times = np.arange(0.0, 131.0, 10.0)
    times = np.asarray(times, dtype=float)

    n_male = int(round(n_animals * male_fraction))
    sexes = ["M"] * n_male + ["F"] * (n_animals - n_male)
    ages = np.round(rng.uniform(8.0, 40.0, n_animals), 1)
    animal_offsets = rng.normal(0.0, 0.12, n_animals)

    rows = []
    for a in range(n_animals):
        for _ in range(sessions_per_animal):
            prop = float(np.round(rng.uniform(0.08, 0.40), 3))
            temp = float(np.round(rng.uniform(20.0, 26.0), 1))
            base = (
                1.6
                + 0.012 * (ages[a] - 20.0)
                + (0.15 if sexes[a] == "M" else 0.0)
                - 0.03 * (temp - 23.0)
                + animal_offsets[a]
            )
            for t in times:
                # Sampling times jitter a little around the schedule, as in real trials.
                t_obs = float(max(0.0, t + rng.normal(0.0, 1.0))) if t > 0 else 0.0
                o2 = base + 2.5 * prop * hif_curve(t_obs) + rng.normal(0.0, noise_sd)
                rows.append(
                    {
                        SUBJECT_COL: f"D{a + 1:02d}",
                        TIME_COL: round(t_obs, 2),
                        RESPONSE_COL: o2,
                        PROPORTION_COL: prop,
                        AGE_COL: ages[a],
                        SEX_COL: sexes[a],
                        POOL_TEMP_COL: temp,
                        KCAL_COL: round(prop * DAILY_KCAL, 1),
                    }
                )
    df = pd.DataFrame(rows)
    df[SUBJECT_COL] = df[SUBJECT_COL].astype("category")
    df[SEX_COL] = df[SEX_COL].astype("category")
    return df
