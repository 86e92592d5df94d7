import numpy as np
import pandas as pd
import pytest

from Surrogate_Methods.Data_Model import FeatureTerm, SurrogateModel
from Surrogate_Methods.Errors import FeatureMismatch
from Surrogate_Methods.Reason_Codes import ContributionEngine
from Surrogate_Methods.Region_Selection import RegionSelector
from Surrogate_Methods.Surrogate_Fitting import SurrogateFitter


@pytest.fixture
def surrogate():
    return SurrogateModel(
        intercept=2.0,
        coefficients={
            FeatureTerm("Def_Int"): 1.7,
            FeatureTerm("Games"): -0.5,
            FeatureTerm("Rush_Yds"): 0.0,
            FeatureTerm("Pos", "QB"): 5.0,
            FeatureTerm("Pos", "RB"): -1.0,
        },
        input_features=("Pos", "Games", "Rush_Yds", "Def_Int"),
    )


@pytest.fixture
def instance():
    return {"Pos": "QB", "Games": 4, "Rush_Yds": 120.0, "Def_Int": 10}


def test_strength_is_coefficient_times_value(surrogate, instance):
    codes = {c.term: c for c in ContributionEngine.reason_codes(surrogate, instance)}
    code = codes[FeatureTerm("Def_Int")]
    assert code.strength == pytest.approx(17.0)
    assert code.sign == 1
    assert code.value == 10
    assert code.coefficient == 1.7


def test_only_active_level_and_nonzero_terms(surrogate, instance):
    terms = [c.term for c in ContributionEngine.reason_codes(surrogate, instance)]
    assert FeatureTerm("Pos", "QB") in terms
    assert FeatureTerm("Pos", "RB") not in terms
    assert FeatureTerm("Rush_Yds") not in terms


def test_reason_codes_draw_from_nonzero_terms(surrogate, instance):
    assert FeatureTerm("Rush_Yds") not in surrogate.nonzero
    terms = {c.term for c in ContributionEngine.reason_codes(surrogate, instance)}
    assert terms <= set(surrogate.nonzero)


def test_ranked_by_absolute_strength(surrogate, instance):
    codes = ContributionEngine.reason_codes(surrogate, instance)
    assert [str(c.term) for c in codes] == ["Def_Int", "Pos=QB", "Games"]


def test_sign_follows_coefficient(surrogate, instance):
    instance = dict(instance, Games=-3)
    games = [c for c in ContributionEngine.reason_codes(surrogate, instance) if c.feature == "Games"][0]
    assert games.strength == pytest.approx(1.5)
    assert games.sign == -1


def test_strengths_reconstruct_decision_value(surrogate, instance):
    codes = ContributionEngine.reason_codes(surrogate, instance)
    total = surrogate.intercept + sum(c.strength for c in codes)
    assert total == pytest.approx(ContributionEngine.decision_value(surrogate, instance), abs=1e-6)
    assert ContributionEngine.predict(surrogate, instance) == pytest.approx(2.0 + 17.0 + 5.0 - 2.0)


def test_out_of_range_values_extrapolate(surrogate, instance):
    instance = dict(instance, Def_Int=1000)
    codes = {c.feature: c for c in ContributionEngine.reason_codes(surrogate, instance)}
    assert codes["Def_Int"].strength == pytest.approx(1700.0)


def test_feature_set_mismatch(surrogate, instance):
    missing = {k: v for k, v in instance.items() if k != "Games"}
    with pytest.raises(FeatureMismatch) as err:
        ContributionEngine.reason_codes(surrogate, missing)
    assert err.value.stage == "contribution"
    with pytest.raises(FeatureMismatch):
        ContributionEngine.reason_codes(surrogate, dict(instance, Height=75))
    with pytest.raises(FeatureMismatch):
        ContributionEngine.reason_codes(surrogate, dict(instance, Games="many"))


def test_accepts_series_and_single_row_frame(surrogate, instance):
    from_dict = ContributionEngine.reason_codes(surrogate, instance)
    assert ContributionEngine.reason_codes(surrogate, pd.Series(instance)) == from_dict
    assert ContributionEngine.reason_codes(surrogate, pd.DataFrame([instance])) == from_dict


def test_classification_predict_is_probability(instance):
    surrogate = SurrogateModel(
        intercept=-1.0,
        coefficients={FeatureTerm("Def_Int"): 0.1},
        input_features=("Pos", "Games", "Rush_Yds", "Def_Int"),
        task="classification",
    )
    assert ContributionEngine.decision_value(surrogate, instance) == pytest.approx(0.0)
    assert ContributionEngine.predict(surrogate, instance) == pytest.approx(0.5)


def test_reconstruction_on_fitted_surrogate(players, linear_box):
    region = RegionSelector(players).select("Pos == 'QB'")
    surrogate = SurrogateFitter().fit(region, linear_box, exclude=["Rush_TD"])
    for _, row in region.features.iterrows():
        codes = ContributionEngine.reason_codes(surrogate, row)
        total = surrogate.intercept + sum(c.strength for c in codes)
        assert total == pytest.approx(ContributionEngine.decision_value(surrogate, row), abs=1e-6)


def test_reason_code_frame(surrogate, instance):
    frame = pd.DataFrame([instance, dict(instance, Pos="RB", Def_Int=0)], index=["a", "b"])
    table = ContributionEngine.reason_code_frame(surrogate, frame, top_k=2)
    assert list(table.columns) == ["record", "rank", "feature", "level", "value", "coefficient", "strength", "sign"]
    assert table.groupby("record")["rank"].max().to_dict() == {"a": 2, "b": 2}
    b = table[table["record"] == "b"]
    assert b.iloc[0]["feature"] == "Games"
    assert b.iloc[1]["level"] == "RB"
    assert np.all(np.diff(table[table["record"] == "a"]["strength"].abs().to_numpy()) <= 0)
