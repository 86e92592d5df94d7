# Explanatory Power measures how much of the black box's output is "explained" by a surrogate's reason codes.
# A high explanatory power means intercept + reason codes track the black box closely over the region.

"""
Interpretation Guide:

Metric	               Good Value	            Interpretation
Raw Power	           Close to |deltas|	    Reason codes capture true effect sizes
Normalized Power       80-120%	                Reason codes fully account for outputs
R² Score	           >0.8	                    Surrogate matches model behavior well
Reconstruction Error   ~0	                    intercept + sum(strengths) equals the surrogate output
"""


from __future__ import annotations

from typing import Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy.stats import pearsonr, spearmanr
from sklearn.metrics import r2_score

from Surrogate_Methods.Data_Model import PredictFn, SurrogateModel, black_box_scores
from Surrogate_Methods.Reason_Codes import ContributionEngine


def _safe_logit(p: np.ndarray, eps: float = 1e-7) -> np.ndarray:
    p = np.clip(p, eps, 1 - eps)
    return np.log(p / (1 - p))


class SurrogateExplanatoryPowerEvaluator:
    """
    explanatory power evaluator for region surrogates.

    For record i under surrogate g:

      y_i: black-box output in the surrogate's space (score, or logit of the positive class)
      b:   surrogate intercept
      s_i: sum_j strength_ij (signed sum of reason codes)

      delta d_i = y_i - b
      normalized_power = s_i / d_i
      R² = R²(y, b + s)
    """

    def __init__(self, predict_fn: PredictFn, n_jobs: int = 1, label: Optional[int] = None):
        self.predict_fn = predict_fn
        self.n_jobs = n_jobs
        self.label = label

    def evaluate(
        self,
        surrogate: SurrogateModel,
        X: pd.DataFrame,
        weights: Optional[np.ndarray] = None,
    ) -> Dict[str, Union[float, int, np.ndarray, str]]:
        if not isinstance(X, pd.DataFrame):
            raise TypeError("X must be a pandas DataFrame")
        if X.empty:
            raise ValueError("X must contain at least one record")

        target_outputs = self._model_outputs(surrogate, X)
        signed_sums, abs_sums, decisions = self._reason_code_sums(surrogate, X)
        baseline = surrogate.intercept
        deltas = target_outputs - baseline

        eps = 1e-9
        denom = np.where(np.abs(deltas) > eps, deltas, np.nan)
        normalized = signed_sums / denom

        valid = np.isfinite(signed_sums) & np.isfinite(deltas)
        r2 = r2_score(target_outputs, baseline + signed_sums, sample_weight=weights) if valid.sum() > 1 else np.nan
        pearson_corr, spearman_corr = self._correlations(np.abs(deltas[valid]), abs_sums[valid])
        finite_norm = normalized[np.isfinite(normalized)]

        return {
            "model_outputs": target_outputs,
            "surrogate_outputs": decisions,
            "baseline": baseline,
            "deltas": deltas,
            "signed_powers": signed_sums,
            "raw_powers": abs_sums,
            "normalized_powers": normalized,
            "mean_raw_power": float(np.mean(abs_sums)),
            "std_raw_power": float(np.std(abs_sums)),
            "min_raw_power": float(np.min(abs_sums)),
            "max_raw_power": float(np.max(abs_sums)),
            "mean_normalized_power": float(np.mean(finite_norm)) if finite_norm.size else np.nan,
            "std_normalized_power": float(np.std(finite_norm)) if finite_norm.size else np.nan,
            "pearson_corr": pearson_corr,
            "spearman_corr": spearman_corr,
            "r2_score": float(r2),
            "reconstruction_error": float(np.max(np.abs(baseline + signed_sums - decisions))),
            "task": surrogate.task,
            "num_instances": len(X),
        }

    # ------------------------------ Internals ------------------------------

    def _model_outputs(self, surrogate: SurrogateModel, X: pd.DataFrame) -> np.ndarray:
        scores = black_box_scores(self.predict_fn, X, stage="contribution")
        if surrogate.task == "regression":
            return scores
        if scores.ndim == 2:
            scores = scores[:, -1 if self.label is None else self.label]
        return _safe_logit(scores)

    def _reason_code_sums(self, surrogate: SurrogateModel, X: pd.DataFrame) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        def process_row(row: pd.Series) -> Tuple[float, float, float]:
            codes = ContributionEngine.reason_codes(surrogate, row)
            signed_sum = float(np.sum([c.strength for c in codes])) if codes else 0.0
            abs_sum = float(np.sum([abs(c.strength) for c in codes])) if codes else 0.0
            return signed_sum, abs_sum, ContributionEngine.decision_value(surrogate, row)

        results = Parallel(n_jobs=self.n_jobs)(delayed(process_row)(row) for _, row in X.iterrows())
        signed_sums, abs_sums, decisions = map(np.asarray, zip(*results))
        return signed_sums, abs_sums, decisions

    @staticmethod
    def _correlations(a: np.ndarray, b: np.ndarray) -> Tuple[float, float]:
        if len(a) < 2 or np.ptp(a) == 0 or np.ptp(b) == 0:
            return np.nan, np.nan
        return float(pearsonr(a, b)[0]), float(spearmanr(a, b)[0])
