# Region selection
# ---------------------------------------------------------
# What: Carves out the neighborhood a surrogate is fitted on. Four rules:
#       exact match on a field, a quantile band of the target or prediction,
#       perturbation samples around one instance, or one k-means cluster.
# How: Filter rules return row views of the dataset with unit weights.
#       Perturbation resamples every feature from its marginal distribution
#       and weights each sample with an exponential kernel on its distance to
#       the anchor instance (row 0, weight 1).
# Why: Reason codes are only meaningful locally; the region defines "local".


import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd
from lime.discretize import QuartileDiscretizer
from sklearn.cluster import KMeans

from Surrogate_Methods.Config import ExplainerConfig
from Surrogate_Methods.Data_Model import (
    Dataset,
    FeatureTerm,
    PredictFn,
    Region,
    as_feature_vector,
    black_box_scores,
    check_features,
)
from Surrogate_Methods.Errors import EmptyRegion, FeatureMismatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExactMatch:
    field: str
    value: Any

    def __str__(self) -> str:
        return f"{self.field} == {self.value!r}"


@dataclass(frozen=True)
class QuantileRange:
    lower: float
    upper: float
    basis: str = "target"  # or "prediction"
    label: Optional[int] = None

    def __str__(self) -> str:
        return f"{self.basis} in quantiles [{self.lower}, {self.upper}]"


@dataclass(frozen=True)
class Perturbation:
    instance: Mapping[str, Any]
    num_samples: Optional[int] = None
    kernel_width: Optional[float] = None
    sampling: Optional[str] = None
    random_state: Optional[int] = None

    def __str__(self) -> str:
        return "perturbation"


@dataclass(frozen=True)
class Cluster:
    cluster: int
    n_clusters: int
    random_state: Optional[int] = None

    def __str__(self) -> str:
        return f"cluster {self.cluster} of {self.n_clusters}"


Rule = Union[ExactMatch, QuantileRange, Perturbation, Cluster]

_RULE_PATTERN = re.compile(r"^\s*([A-Za-z_][\w.]*)\s*==\s*(.+?)\s*$")


def parse_rule(text: str) -> ExactMatch:
    """Parse ``"Pos == 'QB'"`` style rules into an ExactMatch."""
    match = _RULE_PATTERN.match(text)
    if match is None:
        raise ValueError(f"Cannot parse region rule: {text!r}")
    field, raw = match.groups()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "'\"":
        return ExactMatch(field, raw[1:-1])
    for cast in (int, float):
        try:
            return ExactMatch(field, cast(raw))
        except ValueError:
            pass
    return ExactMatch(field, raw)


def exponential_kernel(distances: np.ndarray, width: float) -> np.ndarray:
    return np.exp(-(np.asarray(distances, dtype=float) ** 2) / width ** 2)


class RegionSelector:
    def __init__(self, dataset: Dataset, config: Optional[ExplainerConfig] = None):
        self.dataset = dataset
        self.config = config or ExplainerConfig()
        self.feature_names = dataset.feature_names
        self.numeric = list(dataset.numeric_features)
        self.categorical = list(dataset.categorical)

        numeric = dataset.features[self.numeric].astype(float)
        self._means = numeric.mean().to_numpy(dtype=float)
        scales = numeric.std(ddof=0).to_numpy(dtype=float, copy=True)
        scales[~np.isfinite(scales) | (scales == 0)] = 1.0
        self._scales = scales
        self._levels: Dict[str, Tuple[np.ndarray, np.ndarray]] = {}
        for c in self.categorical:
            freq = dataset.features[c].value_counts(normalize=True, sort=False)
            self._levels[c] = (np.asarray(freq.index, dtype=object), freq.to_numpy(dtype=float) / freq.sum())

    @property
    def default_kernel_width(self) -> float:
        return float(np.sqrt(len(self.feature_names)) * 0.75)

    def select(self, rule: Union[Rule, str], predict_fn: Optional[PredictFn] = None) -> Region:
        if isinstance(rule, str):
            rule = parse_rule(rule)
        if isinstance(rule, ExactMatch):
            return self.exact_match(rule.field, rule.value)
        if isinstance(rule, QuantileRange):
            return self.quantile(rule.lower, rule.upper, basis=rule.basis, label=rule.label, predict_fn=predict_fn)
        if isinstance(rule, Perturbation):
            return self.perturb(
                rule.instance,
                num_samples=rule.num_samples,
                kernel_width=rule.kernel_width,
                sampling=rule.sampling,
                random_state=rule.random_state,
            )
        if isinstance(rule, Cluster):
            return self.cluster(rule.cluster, rule.n_clusters, random_state=rule.random_state)
        raise ValueError(f"Unsupported region rule: {rule!r}")

    # ------------------------------ Filter rules ------------------------------

    def exact_match(self, field: str, value: Any) -> Region:
        if field in self.dataset.features.columns:
            column = self.dataset.features[field]
        elif field == self.dataset.target_name:
            column = self.dataset.target
        else:
            raise FeatureMismatch(f"unknown field {field!r}", stage="selection")
        return self._view((column == value).to_numpy(), str(ExactMatch(field, value)))

    def quantile(
        self,
        lower: float,
        upper: float,
        basis: str = "target",
        label: Optional[int] = None,
        predict_fn: Optional[PredictFn] = None,
    ) -> Region:
        if not 0.0 <= lower < upper <= 1.0:
            raise ValueError(f"quantile band requires 0 <= lower < upper <= 1, got [{lower}, {upper}]")
        if basis == "target":
            if not pd.api.types.is_numeric_dtype(self.dataset.target):
                raise ValueError("quantile selection on the target requires a numeric target")
            values = self.dataset.target.to_numpy(dtype=float)
        elif basis == "prediction":
            if predict_fn is None:
                raise ValueError("quantile selection on predictions requires predict_fn")
            values = black_box_scores(predict_fn, self.dataset.features, stage="selection")
            if values.ndim == 2:
                values = values[:, -1 if label is None else label]
        else:
            raise ValueError(f"basis must be 'target' or 'prediction', got {basis!r}")
        lo, hi = np.quantile(values, [lower, upper])
        rule = str(QuantileRange(lower, upper, basis, label))
        return self._view((values >= lo) & (values <= hi), rule)

    def cluster_labels(self, n_clusters: int, random_state: Optional[int] = None) -> np.ndarray:
        seed = self.config.random_state if random_state is None else random_state
        features = self.dataset.features
        blocks = [(features[self.numeric].to_numpy(dtype=float) - self._means) / self._scales]
        if self.categorical:
            blocks.append(pd.get_dummies(features[self.categorical].astype(str), dtype=float).to_numpy())
        X = np.hstack(blocks)
        return KMeans(n_clusters=n_clusters, n_init=10, random_state=seed).fit_predict(X)

    def cluster(self, cluster: int, n_clusters: int, random_state: Optional[int] = None) -> Region:
        labels = self.cluster_labels(n_clusters, random_state)
        return self._view(labels == cluster, str(Cluster(cluster, n_clusters, random_state)))

    def cluster_regions(self, n_clusters: int, random_state: Optional[int] = None) -> Dict[int, Region]:
        labels = self.cluster_labels(n_clusters, random_state)
        return {
            int(k): self._view(labels == k, str(Cluster(int(k), n_clusters, random_state)))
            for k in np.unique(labels)
        }

    def all_records(self) -> Region:
        return self._view(np.ones(len(self.dataset), dtype=bool), "all records")

    def _view(self, mask: np.ndarray, rule: str) -> Region:
        frame = self.dataset.features.loc[np.asarray(mask, dtype=bool)]
        if frame.empty:
            raise EmptyRegion(f"rule {rule} matched no records")
        logger.info(f"Region '{rule}': {len(frame)} of {len(self.dataset)} records")
        return Region(
            features=frame,
            weights=np.ones(len(frame)),
            rule=rule,
            categorical=tuple(self.categorical),
        )

    # ------------------------------ Perturbation ------------------------------

    def perturb(
        self,
        instance: Mapping[str, Any],
        num_samples: Optional[int] = None,
        kernel_width: Optional[float] = None,
        sampling: Optional[str] = None,
        random_state: Optional[int] = None,
    ) -> Region:
        anchor = as_feature_vector(instance)
        check_features(self.feature_names, anchor, stage="selection")
        n = num_samples or self.config.num_samples
        width = kernel_width or self.config.kernel_width or self.default_kernel_width
        sampling = sampling or self.config.sampling
        seed = self.config.random_state if random_state is None else random_state
        if n < 2:
            raise ValueError("num_samples must be at least 2 (anchor plus one neighbor)")
        rng = np.random.default_rng(seed)

        columns: Dict[str, np.ndarray] = {}
        if self.numeric:
            x = self._numeric_anchor(anchor)
            if sampling == "gaussian":
                values = x + rng.standard_normal((n, len(self.numeric))) * self._scales
            elif sampling == "quartile":
                values = self._quartile_samples(n, rng, seed)
            else:
                raise ValueError(f"Unsupported sampling: {sampling}")
            values[0] = x
            for j, c in enumerate(self.numeric):
                columns[c] = values[:, j]
        for c in self.categorical:
            levels, probs = self._levels[c]
            draws = levels[rng.choice(len(levels), size=n, p=probs)]
            draws[0] = anchor[c]
            columns[c] = draws

        frame = pd.DataFrame({c: columns[c] for c in self.feature_names})
        data, _ = self._interpretable(frame, anchor)
        distances = np.sqrt(((data - data[0]) ** 2).sum(axis=1))
        weights = exponential_kernel(distances, width)
        logger.debug(f"Perturbation region: {n} samples, width={width:.3f}, sampling={sampling}, seed={seed}")
        return Region(
            features=frame,
            weights=weights,
            rule="perturbation",
            categorical=tuple(self.categorical),
            anchor=anchor,
            distances=distances,
            kernel_width=float(width),
        )

    def interpretable_data(self, region: Region) -> Tuple[np.ndarray, List[FeatureTerm]]:
        """Standardized numeric columns and same-level indicators relative to the anchor."""
        if region.anchor is None:
            raise ValueError("interpretable data is defined for perturbation regions only")
        return self._interpretable(region.features, region.anchor)

    def _interpretable(self, frame: pd.DataFrame, anchor: Dict[str, Any]) -> Tuple[np.ndarray, List[FeatureTerm]]:
        blocks, terms = [], []
        for c in self.feature_names:
            if c in self._levels:
                blocks.append((frame[c] == anchor[c]).to_numpy(dtype=float))
                terms.append(FeatureTerm(c, anchor[c]))
            else:
                j = self.numeric.index(c)
                blocks.append((frame[c].to_numpy(dtype=float) - self._means[j]) / self._scales[j])
                terms.append(FeatureTerm(c))
        return np.column_stack(blocks), terms

    def _numeric_anchor(self, anchor: Dict[str, Any]) -> np.ndarray:
        x = np.empty(len(self.numeric))
        for j, c in enumerate(self.numeric):
            try:
                x[j] = float(anchor[c])
            except (TypeError, ValueError):
                raise FeatureMismatch(f"numeric feature {c!r} got {anchor[c]!r}", stage="selection")
        return x

    def _quartile_samples(self, n: int, rng: np.random.Generator, seed: int) -> np.ndarray:
        data = self.dataset.features[self.numeric].to_numpy(dtype=float)
        discretizer = QuartileDiscretizer(
            data, categorical_features=[], feature_names=self.numeric, random_state=seed
        )
        binned = discretizer.discretize(data).astype(int)
        bins = np.zeros((n, len(self.numeric)), dtype=int)
        for j in range(len(self.numeric)):
            n_bins = len(discretizer.means[j])
            freq = np.bincount(binned[:, j], minlength=n_bins) / len(binned)
            bins[:, j] = rng.choice(n_bins, size=n, p=freq)
        values = discretizer.undiscretize(bins.astype(float))
        # lime returns a z-score for single-valued bins; restore the bin value
        for j in range(len(self.numeric)):
            mins = np.asarray(discretizer.mins[j], dtype=float)[bins[:, j]]
            maxs = np.asarray(discretizer.maxs[j], dtype=float)[bins[:, j]]
            flat = mins == maxs
            values[flat, j] = mins[flat]
        return values
