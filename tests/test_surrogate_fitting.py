import warnings

import numpy as np
import pandas as pd
import pytest

from Surrogate_Methods.Config import ExplainerConfig
from Surrogate_Methods.Data_Model import FeatureTerm, Region
from Surrogate_Methods.Errors import FeatureMismatch, SingularFit
from Surrogate_Methods.Reason_Codes import ContributionEngine
from Surrogate_Methods.Region_Selection import RegionSelector
from Surrogate_Methods.Surrogate_Fitting import (
    Candidate,
    SurrogateFitter,
    build_terms,
    choose_candidate,
    design_matrix,
)


@pytest.fixture
def qb_region(players, fast_config):
    return RegionSelector(players, fast_config).select("Pos == 'QB'")


def test_recovers_black_box_coefficients(qb_region, linear_box):
    surrogate = SurrogateFitter(ExplainerConfig()).fit(qb_region, linear_box, exclude=["Rush_TD"])
    coef = surrogate.coefficients
    assert coef[FeatureTerm("Def_Int")] == pytest.approx(1.7, rel=0.05)
    assert coef[FeatureTerm("Games")] == pytest.approx(0.3, rel=0.05)
    assert coef[FeatureTerm("Rush_Yds")] == pytest.approx(0.01, rel=0.05)
    assert surrogate.fit_quality > 0.99
    assert surrogate.n_records == 50
    assert surrogate.excluded == ("Rush_TD",)
    assert all(t.feature != "Rush_TD" for t in coef)
    # Pos is constant among quarterbacks
    assert all(t.feature != "Pos" for t in coef)


def test_fits_black_box_output_not_ground_truth(qb_region, players, linear_box):
    surrogate = SurrogateFitter(ExplainerConfig()).fit(qb_region, linear_box, exclude=["Rush_TD"])
    decisions = np.array([
        ContributionEngine.decision_value(surrogate, row) for _, row in qb_region.features.iterrows()
    ])
    to_model = np.abs(decisions - linear_box(qb_region.features))
    to_truth = np.abs(decisions - players.target.loc[qb_region.index].to_numpy())
    assert to_model.max() < 0.1
    assert to_truth.mean() > 10 * to_model.mean()


def test_input_features_include_exclusions(qb_region, linear_box, players):
    surrogate = SurrogateFitter().fit(qb_region, linear_box, exclude=["Rush_TD"])
    assert surrogate.input_features == players.feature_names


def test_unknown_exclusion(qb_region, linear_box):
    with pytest.raises(FeatureMismatch) as err:
        SurrogateFitter().fit(qb_region, linear_box, exclude=["Height"])
    assert err.value.stage == "filtering"


def test_duplicate_columns_are_singular():
    rng = np.random.default_rng(3)
    x = rng.normal(size=200)
    frame = pd.DataFrame({"x": x, "x_copy": 2.0 * x, "z": rng.normal(size=200)})
    region = Region(features=frame, weights=np.ones(200), rule="all")
    with pytest.raises(SingularFit) as err:
        SurrogateFitter().fit(region, lambda f: f["x"].to_numpy() + f["z"].to_numpy())
    assert err.value.stage == "fitting"

    surrogate = SurrogateFitter().fit(region, lambda f: f["x"].to_numpy() + f["z"].to_numpy(), exclude=["x_copy"])
    assert surrogate.coefficients[FeatureTerm("x")] == pytest.approx(1.0, rel=0.05)


def test_all_constant_features_are_singular():
    frame = pd.DataFrame({"a": np.ones(20), "b": np.full(20, 3.0)})
    region = Region(features=frame, weights=np.ones(20), rule="flat")
    with pytest.raises(SingularFit):
        SurrogateFitter().fit(region, lambda f: np.ones(len(f)))


def test_classification_surrogate(players, binary_box):
    config = ExplainerConfig(task="classification", n_alphas=5)
    region = RegionSelector(players, config).all_records()
    surrogate = SurrogateFitter(config).fit(region, binary_box, exclude=["Rush_TD"])
    assert surrogate.task == "classification"
    assert surrogate.coefficients[FeatureTerm("Def_Int")] > 0
    assert surrogate.coefficients[FeatureTerm("Rush_Yds")] > 0
    assert 0.0 < surrogate.fit_quality <= 1.0
    p = ContributionEngine.predict(surrogate, players.features.iloc[0])
    assert 0.0 <= p <= 1.0


def test_classification_fit_raises_no_deprecation_warnings(players, binary_box):
    config = ExplainerConfig(task="classification", n_alphas=3, l1_ratios=(0.5,))
    region = RegionSelector(players, config).all_records()
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        SurrogateFitter(config).fit(region, binary_box, exclude=["Rush_TD"])
    deprecations = [w for w in caught if issubclass(w.category, (FutureWarning, DeprecationWarning))]
    assert not [str(w.message) for w in deprecations if "penalty" in str(w.message)]


def test_single_class_region_is_singular(qb_region):
    config = ExplainerConfig(task="classification")
    with pytest.raises(SingularFit):
        SurrogateFitter(config).fit(qb_region, lambda f: np.full(len(f), 0.1))


def test_cross_validated_selection(qb_region, linear_box):
    config = ExplainerConfig(selection="cv", n_alphas=6, cv_folds=3)
    surrogate = SurrogateFitter(config).fit(qb_region, linear_box, exclude=["Rush_TD"])
    assert surrogate.coefficients[FeatureTerm("Def_Int")] == pytest.approx(1.7, rel=0.05)


def test_choose_candidate_prefers_sparsity_then_larger_alpha():
    candidates = [
        Candidate(alpha=0.01, l1_ratio=0.5, score=1.0, nonzero=4, estimator=None),
        Candidate(alpha=0.1, l1_ratio=0.5, score=1.0, nonzero=2, estimator=None),
        Candidate(alpha=1.0, l1_ratio=0.5, score=1.0, nonzero=2, estimator=None),
        Candidate(alpha=5.0, l1_ratio=0.5, score=float("nan"), nonzero=0, estimator=None),
        Candidate(alpha=0.001, l1_ratio=0.5, score=1.5, nonzero=1, estimator=None),
    ]
    best = choose_candidate(candidates)
    assert best.alpha == 1.0 and best.nonzero == 2


def test_build_terms_expands_levels():
    frame = pd.DataFrame({"team": ["b", "a", "b"], "x": [1.0, 2.0, 3.0]})
    terms = build_terms(frame, ["team"])
    assert terms == [FeatureTerm("team", "a"), FeatureTerm("team", "b"), FeatureTerm("x")]
    X = design_matrix(frame, terms)
    np.testing.assert_array_equal(X, [[0, 1, 1], [1, 0, 2], [0, 1, 3]])
