# Surrogate fitting
# ---------------------------------------------------------
# What: Fits an elastic-net linear model (continuous output) or an elastic-net
#       logistic model (binary output) to the black box's own predictions over
#       a region.
# How: Categoricals are one-hot expanded into FeatureTerm columns, columns are
#       standardized with the region weights, an alpha grid is swept and the
#       best fit by information criterion or held-out deviance is kept.
#       Coefficients are mapped back to raw feature units.
# Why: Fitting the model's output rather than the ground truth makes the
#       result a surrogate of the model's local decision surface.


import logging
import warnings
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import ElasticNet, LogisticRegression
from sklearn.metrics import r2_score
from sklearn.model_selection import KFold, StratifiedKFold

from Surrogate_Methods.Config import ExplainerConfig
from Surrogate_Methods.Data_Model import FeatureTerm, PredictFn, Region, SurrogateModel, black_box_scores
from Surrogate_Methods.Errors import FeatureMismatch, SingularFit

logger = logging.getLogger(__name__)

_EPS = 1e-12


class Candidate(NamedTuple):
    alpha: float
    l1_ratio: float
    score: float
    nonzero: int
    estimator: object


def build_terms(frame: pd.DataFrame, categorical: Iterable[str]) -> List[FeatureTerm]:
    categorical = set(categorical)
    terms: List[FeatureTerm] = []
    for c in frame.columns:
        if c in categorical:
            levels = sorted(pd.unique(frame[c]), key=str)
            terms.extend(FeatureTerm(c, level) for level in levels)
        else:
            terms.append(FeatureTerm(c))
    return terms


def design_matrix(frame: pd.DataFrame, terms: Sequence[FeatureTerm]) -> np.ndarray:
    columns = []
    for term in terms:
        if term.is_indicator:
            columns.append((frame[term.feature] == term.level).to_numpy(dtype=float))
        else:
            columns.append(frame[term.feature].to_numpy(dtype=float))
    return np.column_stack(columns) if columns else np.empty((len(frame), 0))


def weighted_pseudo_r2(y: np.ndarray, p: np.ndarray, w: np.ndarray) -> float:
    """McFadden pseudo-R^2 with per-sample weights."""
    p = np.clip(p, _EPS, 1 - _EPS)
    p0 = float(np.average(y, weights=w))
    if p0 <= 0.0 or p0 >= 1.0:
        return 0.0
    ll = np.sum(w * (y * np.log(p) + (1 - y) * np.log(1 - p)))
    ll0 = np.sum(w * (y * np.log(p0) + (1 - y) * np.log(1 - p0)))
    return float(1.0 - ll / ll0)


def choose_candidate(candidates: Sequence[Candidate]) -> Candidate:
    """Lowest score wins; ties go to fewer nonzero coefficients, then larger alpha."""
    scores = np.array([c.score for c in candidates], dtype=float)
    scores[np.isnan(scores)] = np.inf
    best = np.min(scores)
    tied = [c for c, s in zip(candidates, scores) if np.isclose(s, best, rtol=1e-9, atol=1e-12)]
    return min(tied, key=lambda c: (c.nonzero, -c.alpha))


class SurrogateFitter:
    def __init__(self, config: Optional[ExplainerConfig] = None):
        self.config = config or ExplainerConfig()

    def fit(
        self,
        region: Region,
        predict_fn: PredictFn,
        exclude: Iterable[str] = (),
        label: Optional[int] = None,
    ) -> SurrogateModel:
        features = region.features
        input_features = tuple(features.columns)
        exclude = tuple(exclude)
        unknown = [f for f in exclude if f not in input_features]
        if unknown:
            raise FeatureMismatch(f"cannot exclude unknown features {unknown}", stage="filtering")
        used = [c for c in input_features if c not in exclude]

        scores = black_box_scores(predict_fn, features, stage="fitting")
        y = self._targets(scores, label)
        w = np.asarray(region.weights, dtype=float)
        if w.shape[0] != len(features) or np.sum(w) <= 0:
            raise SingularFit("region weights are empty or misaligned with its records")
        w = w / w.mean()

        terms = build_terms(features[used], region.categorical)
        X = design_matrix(features, terms)
        X, terms = self._drop_constant(X, terms, w)
        if not terms:
            raise SingularFit(f"no informative features left in region '{region.rule}'")
        self._check_rank(X, terms, w)

        mean = np.average(X, axis=0, weights=w)
        scale = np.sqrt(np.average((X - mean) ** 2, axis=0, weights=w))
        scale[scale == 0] = 1.0
        Xs = (X - mean) / scale

        best = self._sweep(Xs, y, w)
        coef_std, intercept_std = _coefficients(best.estimator)
        coef = coef_std / scale
        intercept = intercept_std - float(np.sum(coef_std * mean / scale))

        eta = intercept + X @ coef
        if self.config.task == "regression":
            quality = float(r2_score(y, eta, sample_weight=w))
        else:
            quality = weighted_pseudo_r2(y, 1.0 / (1.0 + np.exp(-eta)), w)

        logger.info(
            f"Surrogate for '{region.rule}': alpha={best.alpha:.3g}, l1_ratio={best.l1_ratio}, "
            f"{best.nonzero}/{len(terms)} nonzero terms, fit quality={quality:.3f}"
        )
        return SurrogateModel(
            intercept=float(intercept),
            coefficients={t: float(c) for t, c in zip(terms, coef)},
            input_features=input_features,
            excluded=exclude,
            task=self.config.task,
            alpha=float(best.alpha),
            l1_ratio=float(best.l1_ratio),
            fit_quality=quality,
            n_records=len(features),
        )

    # ------------------------------ Internals ------------------------------

    def _targets(self, scores: np.ndarray, label: Optional[int]) -> np.ndarray:
        if self.config.task == "regression":
            if scores.ndim != 1:
                raise ValueError(f"regression surrogate expects 1-D scores, got shape {scores.shape}")
            return scores
        if scores.ndim == 2:
            positive = scores[:, -1 if label is None else label]
        else:
            positive = scores
        y = (positive >= self.config.decision_threshold).astype(int)
        if y.min() == y.max():
            raise SingularFit("black box predicts a single class over the region")
        return y

    def _drop_constant(
        self, X: np.ndarray, terms: List[FeatureTerm], w: np.ndarray
    ) -> Tuple[np.ndarray, List[FeatureTerm]]:
        constant = np.ptp(X[w > 0], axis=0) == 0
        for term, flat in zip(terms, constant):
            if flat and not term.is_indicator:
                logger.warning(f"Feature {term} is constant in the region and is left out of the surrogate")
            elif flat:
                logger.debug(f"Level {term} is constant in the region")
        keep = ~constant
        return X[:, keep], [t for t, k in zip(terms, keep) if k]

    def _check_rank(self, X: np.ndarray, terms: List[FeatureTerm], w: np.ndarray) -> None:
        levels = pd.Series([t.feature for t in terms if t.is_indicator]).value_counts()
        expected = sum(1 for t in terms if not t.is_indicator) + int((levels - 1).sum())
        centered = (X - np.average(X, axis=0, weights=w)) * np.sqrt(w)[:, None]
        rank = int(np.linalg.matrix_rank(centered))
        if rank < expected:
            raise SingularFit(
                f"design matrix has rank {rank} but {expected} independent columns are needed; "
                "lower the correlation threshold to drop more collinear features"
            )

    def _estimator(self, alpha: float, l1_ratio: float, n: int):
        if self.config.task == "regression":
            return ElasticNet(alpha=alpha, l1_ratio=l1_ratio, max_iter=self.config.max_iter)
        # l1_ratio alone selects the elastic-net penalty
        return LogisticRegression(
            solver="saga",
            l1_ratio=l1_ratio,
            C=1.0 / (alpha * n),
            max_iter=self.config.max_iter,
        )

    def _deviance(self, estimator, X: np.ndarray, y: np.ndarray, w: np.ndarray) -> float:
        if self.config.task == "regression":
            return float(np.sum(w * (y - estimator.predict(X)) ** 2))
        p = np.clip(estimator.predict_proba(X)[:, 1], _EPS, 1 - _EPS)
        return float(-2.0 * np.sum(w * (y * np.log(p) + (1 - y) * np.log(1 - p))))

    def _information_criterion(self, deviance: float, nonzero: int, n: int, selection: str) -> float:
        penalty = np.log(n) if selection == "bic" else 2.0
        if self.config.task == "regression":
            fit = n * np.log(max(deviance / n, np.finfo(float).tiny))
        else:
            fit = deviance
        return float(fit + penalty * (nonzero + 1))

    def _splitter(self, y: np.ndarray):
        folds = min(self.config.cv_folds, len(y))
        if self.config.task == "classification":
            folds = min(folds, int(np.bincount(y).min()))
        if folds < 2:
            return None
        if self.config.task == "classification":
            return StratifiedKFold(n_splits=folds, shuffle=True, random_state=self.config.random_state)
        return KFold(n_splits=folds, shuffle=True, random_state=self.config.random_state)

    def _sweep(self, X: np.ndarray, y: np.ndarray, w: np.ndarray) -> Candidate:
        n = len(y)
        alphas = np.logspace(np.log10(self.config.alpha_max), np.log10(self.config.alpha_min), self.config.n_alphas)
        selection = self.config.selection
        splitter = None
        if selection == "cv":
            splitter = self._splitter(y)
            if splitter is None:
                logger.info("Too few records for cross-validation, selecting by BIC")
                selection = "bic"

        candidates = []
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=ConvergenceWarning)
            for l1_ratio in self.config.l1_ratios:
                for alpha in alphas:
                    estimator = self._estimator(alpha, l1_ratio, n).fit(X, y, sample_weight=w)
                    nonzero = int(np.count_nonzero(_coefficients(estimator)[0]))
                    if selection == "cv":
                        score = self._held_out(splitter, X, y, w, alpha, l1_ratio)
                    else:
                        score = self._information_criterion(self._deviance(estimator, X, y, w), nonzero, n, selection)
                    candidates.append(Candidate(float(alpha), float(l1_ratio), score, nonzero, estimator))
        return choose_candidate(candidates)

    def _held_out(self, splitter, X, y, w, alpha, l1_ratio) -> float:
        losses = []
        for train, test in splitter.split(X, y):
            estimator = self._estimator(alpha, l1_ratio, len(train)).fit(X[train], y[train], sample_weight=w[train])
            losses.append(self._deviance(estimator, X[test], y[test], w[test]) / np.sum(w[test]))
        return float(np.mean(losses))


def _coefficients(estimator) -> Tuple[np.ndarray, float]:
    coef = np.ravel(estimator.coef_)
    intercept = float(np.ravel(estimator.intercept_)[0]) if np.ndim(estimator.intercept_) else float(estimator.intercept_)
    return coef, intercept
