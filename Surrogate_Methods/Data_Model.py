"""
Plain structured values passed between the explanation stages.

Dataset and Region wrap pandas frames that are never modified in place.
SurrogateModel, ReasonCode, Explanation and CorrelationReport carry no
behavior so any presentation layer can serialize them.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from Surrogate_Methods.Errors import FeatureMismatch


FeatureVector = Mapping[str, Any]
PredictFn = Callable[[pd.DataFrame], np.ndarray]


# ------------------------------ Inputs ------------------------------

@dataclass(frozen=True)
class Dataset:
    features: pd.DataFrame
    target: pd.Series
    categorical: Tuple[str, ...] = ()

    def __post_init__(self):
        if len(self.features) != len(self.target):
            raise ValueError("features and target must have the same number of records")
        unknown = [c for c in self.categorical if c not in self.features.columns]
        if unknown:
            raise FeatureMismatch(f"categorical features not in dataset: {unknown}", stage="selection")

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        target: str,
        categorical: Optional[Sequence[str]] = None,
    ) -> "Dataset":
        if target not in frame.columns:
            raise ValueError(f"target column {target!r} not in frame")
        features = frame.drop(columns=[target]).copy()
        if categorical is None:
            categorical = [
                c for c in features.columns
                if not pd.api.types.is_numeric_dtype(features[c]) or pd.api.types.is_bool_dtype(features[c])
            ]
        return cls(features=features, target=frame[target].copy(), categorical=tuple(categorical))

    @property
    def target_name(self) -> str:
        return str(self.target.name)

    @property
    def feature_names(self) -> Tuple[str, ...]:
        return tuple(self.features.columns)

    @property
    def numeric_features(self) -> Tuple[str, ...]:
        return tuple(c for c in self.features.columns if c not in self.categorical)

    def __len__(self) -> int:
        return len(self.features)


@dataclass(frozen=True)
class Region:
    """The records (real or synthetic) a surrogate is considered valid over."""

    features: pd.DataFrame
    weights: np.ndarray
    rule: str
    categorical: Tuple[str, ...] = ()
    anchor: Optional[Dict[str, Any]] = None
    distances: Optional[np.ndarray] = None
    kernel_width: Optional[float] = None

    def __len__(self) -> int:
        return len(self.features)

    @property
    def index(self) -> pd.Index:
        return self.features.index


# ------------------------------ Results ------------------------------

@dataclass(frozen=True)
class CorrelatedPair:
    a: str
    b: str
    value: float


@dataclass(frozen=True)
class CorrelationReport:
    pairs: Tuple[CorrelatedPair, ...]
    threshold: float

    def __len__(self) -> int:
        return len(self.pairs)

    def __iter__(self):
        return iter(self.pairs)


@dataclass(frozen=True)
class FeatureTerm:
    """One column of the surrogate design: a numeric feature or one categorical level."""

    feature: str
    level: Any = None

    @property
    def is_indicator(self) -> bool:
        return self.level is not None

    def __str__(self) -> str:
        return self.feature if self.level is None else f"{self.feature}={self.level}"


@dataclass(frozen=True)
class SurrogateModel:
    intercept: float
    coefficients: Mapping[FeatureTerm, float]
    input_features: Tuple[str, ...]
    excluded: Tuple[str, ...] = ()
    task: str = "regression"
    alpha: float = 0.0
    l1_ratio: float = 1.0
    fit_quality: float = float("nan")
    n_records: int = 0

    def __post_init__(self):
        object.__setattr__(self, "coefficients", MappingProxyType(dict(self.coefficients)))
        object.__setattr__(self, "input_features", tuple(self.input_features))
        object.__setattr__(self, "excluded", tuple(self.excluded))

    @property
    def nonzero(self) -> Dict[FeatureTerm, float]:
        return {t: c for t, c in self.coefficients.items() if c != 0.0}


@dataclass(frozen=True)
class ReasonCode:
    feature: str
    level: Any
    value: Any
    coefficient: float
    strength: float
    sign: int

    @property
    def term(self) -> FeatureTerm:
        return FeatureTerm(self.feature, self.level)


@dataclass(frozen=True)
class Explanation:
    instance: Dict[str, Any]
    label: Optional[int]
    predicted: float
    local_prediction: float
    intercept: float
    weights: Tuple[Tuple[FeatureTerm, float], ...]
    score: float
    low_confidence: bool
    num_samples: int
    kernel_width: float
    extra: Dict[str, Any] = field(default_factory=dict)


# ------------------------------ Adapters ------------------------------

def as_feature_vector(instance: Union[FeatureVector, pd.Series, pd.DataFrame]) -> Dict[str, Any]:
    if isinstance(instance, pd.DataFrame):
        if len(instance) != 1:
            raise ValueError(f"expected a single-row frame, got {len(instance)} rows")
        return instance.iloc[0].to_dict()
    if isinstance(instance, pd.Series):
        return instance.to_dict()
    return dict(instance)


def check_features(expected: Sequence[str], instance: Mapping[str, Any], stage: str) -> None:
    if set(instance) != set(expected):
        raise FeatureMismatch.between(expected, instance, stage=stage)


def as_predict_fn(model: Any, task: str = "regression", feature_names: Optional[Sequence[str]] = None) -> PredictFn:
    """Wrap an sklearn-style estimator as a batch ``predict_fn``."""
    predict = model.predict_proba if task == "classification" else model.predict

    def predict_fn(frame: pd.DataFrame) -> np.ndarray:
        if feature_names is not None:
            frame = frame[list(feature_names)]
        return np.asarray(predict(frame))

    return predict_fn


def black_box_scores(predict_fn: PredictFn, frame: pd.DataFrame, stage: str) -> np.ndarray:
    """One batched call to the black box; the result must align with the batch."""
    scores = np.asarray(predict_fn(frame), dtype=float)
    if scores.ndim == 2 and scores.shape[1] == 1:
        scores = scores[:, 0]
    if scores.shape[0] != len(frame):
        raise FeatureMismatch(
            f"black box returned {scores.shape[0]} scores for {len(frame)} records", stage=stage
        )
    return scores
