import numpy as np
import pandas as pd
import pytest

from Surrogate_Methods.Config import ExplainerConfig
from Surrogate_Methods.Data_Model import Dataset

N_PLAYERS = 8000
N_QB = 50
POSITIONS = ["RB", "WR", "TE", "LB", "CB", "S"]
COLLEGES = ["Alabama", "Ohio State", "LSU", "Clemson", "Georgia"]


def linear_score(frame: pd.DataFrame) -> np.ndarray:
    return (
        2.0
        + 1.7 * frame["Def_Int"].to_numpy(dtype=float)
        + 0.01 * frame["Rush_Yds"].to_numpy(dtype=float)
        + 0.3 * frame["Games"].to_numpy(dtype=float)
        + 5.0 * (frame["Pos"] == "QB").to_numpy(dtype=float)
        + 1.0 * (frame["College"] == "Alabama").to_numpy(dtype=float)
    )


def positive_probability(frame: pd.DataFrame) -> np.ndarray:
    logit = (
        -2.5
        + 1.2 * frame["Def_Int"].to_numpy(dtype=float)
        + 0.004 * (frame["Rush_Yds"].to_numpy(dtype=float) - 400.0)
        + 0.1 * (frame["Games"].to_numpy(dtype=float) - 9.0)
    )
    return 1.0 / (1.0 + np.exp(-logit))


def binary_proba(frame: pd.DataFrame) -> np.ndarray:
    p = positive_probability(frame)
    return np.column_stack([1.0 - p, p])


def three_class_proba(frame: pd.DataFrame) -> np.ndarray:
    logits = np.column_stack([
        np.zeros(len(frame)),
        frame["Def_Int"].to_numpy(dtype=float) - 1.5,
        (frame["Games"].to_numpy(dtype=float) - 9.0) / 3.0,
    ])
    e = np.exp(logits - logits.max(axis=1, keepdims=True))
    return e / e.sum(axis=1, keepdims=True)


@pytest.fixture(scope="session")
def players_frame() -> pd.DataFrame:
    rng = np.random.default_rng(7)
    pos = np.concatenate([np.full(N_QB, "QB"), rng.choice(POSITIONS, size=N_PLAYERS - N_QB)])
    rng.shuffle(pos)
    rush_yds = rng.normal(400.0, 150.0, N_PLAYERS)
    frame = pd.DataFrame({
        "Pos": pos,
        "College": rng.choice(COLLEGES, size=N_PLAYERS),
        "Games": rng.integers(1, 18, N_PLAYERS),
        "Rush_Yds": rush_yds,
        "Rush_TD": rush_yds / 100.0 + rng.normal(0.0, 0.1, N_PLAYERS),
        "Def_Int": rng.poisson(1.5, N_PLAYERS),
    })
    frame["Salary"] = linear_score(frame) + rng.normal(0.0, 2.0, N_PLAYERS)
    return frame


@pytest.fixture(scope="session")
def players(players_frame) -> Dataset:
    return Dataset.from_frame(players_frame, "Salary")


@pytest.fixture
def linear_box():
    return linear_score


@pytest.fixture
def binary_box():
    return binary_proba


@pytest.fixture
def three_class_box():
    return three_class_proba


@pytest.fixture
def fast_config() -> ExplainerConfig:
    return ExplainerConfig(num_samples=1000, n_alphas=8)
