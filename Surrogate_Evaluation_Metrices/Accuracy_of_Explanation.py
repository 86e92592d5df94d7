"""
Explanation Accuracy Evaluator for reason codes

Explanation accuracy evaluation based on perturbation analysis.
The metric measures faithfulness of reason codes by testing whether perturbing the features with the
strongest reason codes leads to a significant change in the black box's prediction.

Classification: flip rate of the predicted class
Regression: thresholded relative change of the score

Perturbation strategies: mean, median, zero, noise, random (categoricals use the mode, or a random draw
for noise/random).
Statistical robustness through repeated sampling, bootstrap confidence intervals and permutation tests.
"""


import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from Surrogate_Methods.Data_Model import PredictFn, SurrogateModel, black_box_scores
from Surrogate_Methods.Reason_Codes import ContributionEngine

logger = logging.getLogger(__name__)


# Evaluator
class ReasonCodeFaithfulnessEvaluator:
    """
    The Perturbation based faithfulness
      flip rate for classification
        thresholded relative change for regression
    """

    def __init__(
        self,
        predict_fn: PredictFn,
        perturbation_strategy: str = "mean",
        task: str = "regression",
        regression_threshold: Optional[float] = None,
        n_perturbation_samples: int = 1,
        random_seed: int = 42,
    ):
        if task not in ("classification", "regression"):
            raise ValueError(f"Unsupported task: {task}")
        if perturbation_strategy not in ("mean", "median", "zero", "noise", "random"):
            raise ValueError(f"Unsupported perturbation strategy: {perturbation_strategy}")
        self.predict_fn = predict_fn
        self.perturbation_strategy = perturbation_strategy
        self.task = task
        self.regression_threshold = regression_threshold or 0.1
        self.n_perturbation_samples = n_perturbation_samples
        self.random_seed = random_seed
        self.feature_stats: Dict[str, Any] = {}

    def evaluate(
        self,
        surrogate: SurrogateModel,
        X: pd.DataFrame,
        top_k: int = 5,
        return_details: bool = False,
    ) -> Union[float, Dict[str, Any]]:
        if not isinstance(X, pd.DataFrame) or X.empty:
            raise ValueError("X must be a non-empty pandas DataFrame")
        top_k = min(int(top_k), X.shape[1])
        self._precompute_stats(X)
        original_preds = self._get_predictions(X)

        scores: List[float] = []
        details: List[Dict[str, Any]] = []
        empty_explanations = 0

        for i in range(len(X)):
            instance = X.iloc[[i]]
            codes = ContributionEngine.reason_codes(surrogate, instance)
            top_features = self._get_top_features(codes, top_k)
            if not top_features:
                empty_explanations += 1
                continue

            inst_scores = []
            for s in range(self.n_perturbation_samples):
                pert = self._perturb_features(instance.copy(), top_features, X, sample_idx=s)
                pert_pred = self._get_predictions(pert)[0]
                inst_scores.append(self._calculate_faithfulness(original_preds[i], pert_pred))
            m = float(np.mean(inst_scores))
            scores.append(m)

            if return_details:
                details.append({
                    "instance_idx": i,
                    "faithfulness_score": m,
                    "top_features_names": top_features,
                    "strengths": [c.strength for c in codes[:top_k]],
                    "original_pred": float(original_preds[i]),
                })

        if empty_explanations:
            logger.info(f"{empty_explanations} of {len(X)} records had no nonzero reason codes")
        mean_score = float(np.mean(scores)) if scores else 0.0

        if return_details:
            return {
                "mean_faithfulness": mean_score,
                "std_faithfulness": float(np.std(scores)) if scores else 0.0,
                "median_faithfulness": float(np.median(scores)) if scores else 0.0,
                "min_faithfulness": float(np.min(scores)) if scores else 0.0,
                "max_faithfulness": float(np.max(scores)) if scores else 0.0,
                "scores": np.array(scores, dtype=float),
                "details": details,
                "processed_count": len(scores),
                "total_count": len(X),
                "empty_explanation_count": empty_explanations,
                "config": {
                    "top_k": top_k,
                    "task": self.task,
                    "perturbation_strategy": self.perturbation_strategy,
                    "n_perturbation_samples": self.n_perturbation_samples,
                },
            }
        return mean_score

    def _precompute_stats(self, X: pd.DataFrame) -> None:
        numeric = X.select_dtypes(include=[np.number])
        self.feature_stats = {
            "mean": numeric.mean(),
            "median": numeric.median(),
            "std": numeric.std().replace(0, 1e-6),
            "mode": X.mode().iloc[0],
        }

    def _get_predictions(self, X: pd.DataFrame) -> np.ndarray:
        scores = black_box_scores(self.predict_fn, X, stage="contribution")
        if self.task == "classification" and scores.ndim == 2:
            return np.argmax(scores, axis=1)
        return scores.reshape(-1)

    @staticmethod
    def _get_top_features(codes, top_k: int) -> List[str]:
        features: List[str] = []
        for code in codes:
            if code.feature not in features:
                features.append(code.feature)
            if len(features) == top_k:
                break
        return features

    # The perturbation strategies
    def _perturb_features(
        self,
        instance: pd.DataFrame,
        features: Sequence[str],
        reference_data: pd.DataFrame,
        sample_idx: int = 0,
    ) -> pd.DataFrame:
        rng = np.random.default_rng(self.random_seed + sample_idx)
        instance = instance.astype({c: float for c in features if c in self.feature_stats["mean"].index})
        for col in features:
            j = instance.columns.get_loc(col)
            numeric = col in self.feature_stats["mean"].index
            if self.perturbation_strategy == "random" or (self.perturbation_strategy == "noise" and not numeric):
                instance.iloc[0, j] = rng.choice(reference_data[col].to_numpy())
            elif not numeric:
                instance.iloc[0, j] = self.feature_stats["mode"][col]
            elif self.perturbation_strategy == "zero":
                instance.iloc[0, j] = 0
            elif self.perturbation_strategy == "mean":
                instance.iloc[0, j] = self.feature_stats["mean"][col]
            elif self.perturbation_strategy == "median":
                instance.iloc[0, j] = self.feature_stats["median"][col]
            else:
                instance.iloc[0, j] = self.feature_stats["mean"][col] + rng.normal(0, self.feature_stats["std"][col])
        return instance

    def _calculate_faithfulness(self, original: float, perturbed: float) -> float:
        if self.task == "classification":
            return 1.0 if int(original) != int(perturbed) else 0.0
        abs_change = abs(float(original) - float(perturbed))
        rel = abs_change / (abs(float(original)) + 1e-6)
        return 1.0 if rel > self.regression_threshold else 0.0


# The validation helpers
def bootstrap_ci(values: np.ndarray, n_boot: int = 2000, alpha: float = 0.05, seed: int = 42) -> Tuple[float, float]:
    """Percentile interval of the mean faithfulness."""
    values = np.asarray(values, dtype=float)
    if values.size == 0:
        return 0.0, 0.0
    resamples = np.random.default_rng(seed).integers(0, values.size, size=(n_boot, values.size))
    means = values[resamples].mean(axis=1)
    low, high = np.quantile(means, [alpha / 2, 1 - alpha / 2])
    return float(low), float(high)


def permutation_pvalue(a: np.ndarray, b: np.ndarray, n_perm: int = 2000, seed: int = 42) -> float:
    """Two-sided p-value for a difference in mean scores (reason codes vs. random features)."""
    a, b = np.asarray(a, dtype=float), np.asarray(b, dtype=float)
    if a.size == 0 or b.size == 0:
        return 1.0
    pooled = np.tile(np.concatenate([a, b]), (n_perm, 1))
    shuffled = np.random.default_rng(seed).permuted(pooled, axis=1)
    diffs = np.abs(shuffled[:, : a.size].mean(axis=1) - shuffled[:, a.size:].mean(axis=1))
    extreme = int(np.sum(diffs >= abs(a.mean() - b.mean())))
    return (extreme + 1) / (n_perm + 1)


def random_baseline_scores(
    evaluator: ReasonCodeFaithfulnessEvaluator,
    X: pd.DataFrame,
    top_k: int,
    seed: int = 42,
) -> np.ndarray:
    """Faithfulness when the perturbed features are picked at random instead of by reason code."""
    rng = np.random.default_rng(seed)
    evaluator._precompute_stats(X)
    orig = evaluator._get_predictions(X)
    top_k = min(top_k, X.shape[1])
    scores: List[float] = []
    for i in range(len(X)):
        inst = X.iloc[[i]].copy()
        features = list(rng.choice(X.columns.to_numpy(), size=top_k, replace=False))
        pert = evaluator._perturb_features(inst, features, X, sample_idx=i)
        scores.append(evaluator._calculate_faithfulness(orig[i], evaluator._get_predictions(pert)[0]))
    return np.array(scores, dtype=float)
