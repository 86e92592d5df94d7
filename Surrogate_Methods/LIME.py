# LIME (Local Interpretable Model-agnostic Explanations)
# ---------------------------------------------------------
# What: LIME explains individual predictions by approximating the model locally with a simple interpretable model,
#       usually a linear model. It perturbs data around the instance to see how predictions change.
# How: RegionSelector draws the perturbed neighbors (anchor first, weight 1), the black box scores all of them in
#       one batch, and lime's LimeBase fits a proximity-weighted Ridge model per explained label. A weighted logistic
#       local model is available for one-vs-rest class indicators.
# Why: Model-agnostic and intuitive for single-instance explanations. Helps understand why the model made a
#       particular decision by showing feature weights in that local approximation.


import logging
import warnings
from functools import partial
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from lime.lime_base import LimeBase
from sklearn.linear_model import LogisticRegression

from Surrogate_Methods.Config import ExplainerConfig
from Surrogate_Methods.Data_Model import Dataset, Explanation, PredictFn, Region, black_box_scores
from Surrogate_Methods.Errors import LowConfidenceFit
from Surrogate_Methods.Region_Selection import RegionSelector, exponential_kernel
from Surrogate_Methods.Surrogate_Fitting import weighted_pseudo_r2

logger = logging.getLogger(__name__)


class PerturbationExplainer:
    def __init__(self, dataset: Dataset, config: Optional[ExplainerConfig] = None):
        self.config = config or ExplainerConfig()
        self.selector = RegionSelector(dataset, self.config)

    def explain_instance(
        self,
        instance: Mapping[str, Any],
        predict_fn: PredictFn,
        labels: Optional[Sequence[int]] = None,
        num_features: Optional[int] = None,
        num_samples: Optional[int] = None,
        random_state: Optional[int] = None,
    ) -> List[Explanation]:
        seed = self.config.random_state if random_state is None else random_state
        num_features = num_features or self.config.top_k
        region = self.selector.perturb(instance, num_samples=num_samples, random_state=seed)
        scores = black_box_scores(predict_fn, region.features, stage="selection")
        data, terms = self.selector.interpretable_data(region)

        if self.config.task == "regression":
            if scores.ndim != 1:
                raise ValueError(f"regression explanations expect 1-D scores, got shape {scores.shape}")
            scores = scores.reshape(-1, 1)
            label_ids = [0]
        else:
            if scores.ndim != 2:
                raise ValueError(f"classification explanations expect (n, n_classes) scores, got shape {scores.shape}")
            if labels is None:
                label_ids = list(np.argsort(scores[0])[::-1][: self.config.n_labels])
            else:
                label_ids = list(labels)

        explanations = []
        for label in label_ids:
            if self.config.local_model == "logistic" and self.config.task == "classification":
                result = self._fit_logistic(data, scores, region, int(label), num_features)
            else:
                result = self._fit_linear(data, scores, region, int(label), num_features, seed)
            intercept, used, score, local_pred = result
            low_confidence = bool(score < self.config.min_fit_quality)
            if low_confidence:
                message = (
                    f"Local fit quality {score:.3f} below {self.config.min_fit_quality} "
                    f"(label={label}, width={region.kernel_width:.3f})"
                )
                logger.warning(message)
                warnings.warn(message, LowConfidenceFit)
            explanations.append(Explanation(
                instance=dict(region.anchor),
                label=None if self.config.task == "regression" else int(label),
                predicted=float(scores[0, label]),
                local_prediction=float(local_pred),
                intercept=float(intercept),
                weights=tuple((terms[int(j)], float(wt)) for j, wt in used),
                score=float(score),
                low_confidence=low_confidence,
                num_samples=len(region),
                kernel_width=float(region.kernel_width),
            ))
        return explanations

    def explain_instances(
        self,
        frame: pd.DataFrame,
        predict_fn: PredictFn,
        labels: Optional[Sequence[int]] = None,
        n_jobs: Optional[int] = None,
    ) -> Dict[Any, List[Explanation]]:
        n_jobs = self.config.n_jobs if n_jobs is None else n_jobs
        results = Parallel(n_jobs=n_jobs)(
            delayed(self.explain_instance)(row, predict_fn, labels) for _, row in frame.iterrows()
        )
        return dict(zip(frame.index, results))

    # ------------------------------ Internals ------------------------------

    def _fit_linear(self, data, scores, region: Region, label: int, num_features: int, seed: int):
        base = LimeBase(partial(exponential_kernel, width=region.kernel_width), random_state=seed)
        intercept, used, score, local_pred = base.explain_instance_with_data(
            data,
            scores,
            region.distances,
            label,
            num_features,
            feature_selection=self.config.feature_selection,
        )
        # score is the weighted R^2 of the class probability. A sharp decision surface drops it near
        # p = 0.5, but for a smooth logistic black box the curved tails near 0 or 1 can score lower
        # than the boundary itself.
        # "none" keeps every feature in the fit; only the top num_features are reported
        return intercept, used[:num_features], score, np.ravel(local_pred)[0]

    def _fit_logistic(self, data, scores, region: Region, label: int, num_features: int):
        # one-vs-rest indicator of the black box's predicted class
        y = (np.argmax(scores, axis=1) == label).astype(int)
        w = region.weights
        if y.min() == y.max():
            logger.debug(f"Label {label} indicator is constant over the neighborhood")
            return 0.0, [], 0.0, float(y[0])

        full = LogisticRegression(max_iter=self.config.max_iter).fit(data, y, sample_weight=w)
        order = np.argsort(np.abs(full.coef_[0]))[::-1][:num_features]
        model = LogisticRegression(max_iter=self.config.max_iter).fit(data[:, order], y, sample_weight=w)
        p = model.predict_proba(data[:, order])[:, 1]
        score = weighted_pseudo_r2(y, p, w)
        used = sorted(zip(order, model.coef_[0]), key=lambda x: np.abs(x[1]), reverse=True)
        return float(model.intercept_[0]), used, score, p[0]
