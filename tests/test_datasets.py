import json

import joblib
import numpy as np
import pandas as pd
import pytest
from sklearn.compose import ColumnTransformer
from sklearn.linear_model import LinearRegression
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import OneHotEncoder

from Datasets_prepration.Tabular import load_dataset
from run_reason_codes import run


def test_load_dataset_from_csv(tmp_path, players_frame):
    path = tmp_path / "players.csv"
    players_frame.to_csv(path, index=False)
    dataset = load_dataset(path, "Salary")
    assert len(dataset) == len(players_frame)
    assert set(dataset.categorical) == {"Pos", "College"}
    assert dataset.target_name == "Salary"
    assert "Salary" not in dataset.feature_names


def test_load_dataset_drops_duplicates(players_frame):
    frame = players_frame.iloc[:100]
    doubled = pd.concat([frame, frame.iloc[:10]])
    assert len(load_dataset(doubled, "Salary")) == 100
    assert len(load_dataset(doubled, "Salary", drop_duplicates=False)) == 110


def test_missing_values_are_rejected(players_frame):
    frame = players_frame.iloc[:100].copy()
    frame.loc[frame.index[3], "Rush_Yds"] = np.nan
    with pytest.raises(ValueError, match="Rush_Yds"):
        load_dataset(frame, "Salary")


def test_unknown_target(players_frame):
    with pytest.raises(ValueError):
        load_dataset(players_frame, "Contract")


def test_column_subset(players_frame):
    dataset = load_dataset(players_frame, "Salary", columns=["Pos", "Def_Int"])
    assert dataset.feature_names == ("Pos", "Def_Int")


def test_runner_writes_reason_codes(tmp_path, players_frame):
    data = tmp_path / "players.csv"
    players_frame.to_csv(data, index=False)
    features = players_frame.drop(columns=["Salary"])
    model = make_pipeline(
        ColumnTransformer(
            [("categorical", OneHotEncoder(handle_unknown="ignore"), ["Pos", "College"])],
            remainder="passthrough",
        ),
        LinearRegression(),
    ).fit(features, players_frame["Salary"])
    model_path = tmp_path / "model.joblib"
    joblib.dump(model, model_path)

    output = tmp_path / "out.json"
    payload = run(str(data), "Salary", str(model_path), "Pos == 'QB'", output=str(output), top_k=3)
    assert payload["surrogate"]["n_records"] == 50
    assert payload["excluded"] == ["Rush_TD"]
    written = json.loads(output.read_text())
    assert written["rule"] == "Pos == 'QB'"
    assert max(r["rank"] for r in written["reason_codes"]) <= 3
