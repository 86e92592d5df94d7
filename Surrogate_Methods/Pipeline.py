"""
End-to-end reason-code pipeline.

Dataset + black box -> region -> correlated-feature elimination -> surrogate
-> reason codes, plus K-LIME (one surrogate per k-means cluster and one over
all records) and conversion of results to plain records for serialization.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
from joblib import Parallel, delayed

from Surrogate_Methods.Config import ExplainerConfig
from Surrogate_Methods.Correlation_Filter import FeatureCorrelationFilter
from Surrogate_Methods.Data_Model import (
    CorrelationReport,
    Dataset,
    Explanation,
    PredictFn,
    ReasonCode,
    Region,
    SurrogateModel,
)
from Surrogate_Methods.Errors import FeatureMismatch
from Surrogate_Methods.Reason_Codes import ContributionEngine
from Surrogate_Methods.Region_Selection import RegionSelector, Rule
from Surrogate_Methods.Surrogate_Fitting import SurrogateFitter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegionExplanation:
    region: Region
    correlation: CorrelationReport
    excluded: tuple
    surrogate: SurrogateModel
    reason_codes: Dict[Any, List[ReasonCode]]


@dataclass(frozen=True)
class KLimeResult:
    global_model: RegionExplanation
    clusters: Dict[int, RegionExplanation]
    assignments: np.ndarray


def explain_region(
    dataset: Dataset,
    predict_fn: PredictFn,
    rule: Any,
    config: Optional[ExplainerConfig] = None,
    instances: Optional[Iterable[Any]] = None,
) -> RegionExplanation:
    """Select a region, fit its surrogate and compute reason codes.

    Reason codes cover every record of the region (or the given index
    subset); a perturbation region explains its anchor only.
    """
    config = config or ExplainerConfig()
    region = RegionSelector(dataset, config).select(rule, predict_fn)
    return explain_selected(region, predict_fn, config, instances)


def explain_selected(
    region: Region,
    predict_fn: PredictFn,
    config: ExplainerConfig,
    instances: Optional[Iterable[Any]] = None,
) -> RegionExplanation:
    corr_filter = FeatureCorrelationFilter(
        threshold=config.correlation_threshold,
        policy=config.drop_policy,
        keep=config.keep_features,
    )
    # integer-coded categoricals are one-hot terms, not numeric features
    numeric = [c for c in region.features.columns if c not in region.categorical]
    report = corr_filter.report(region.features, columns=numeric)
    excluded = corr_filter.exclusions(report)
    surrogate = SurrogateFitter(config).fit(region, predict_fn, exclude=excluded)

    if instances is not None:
        instances = list(instances)
        outside = [i for i in instances if i not in region.index]
        if outside:
            raise FeatureMismatch(f"records {outside} are not in region '{region.rule}'", stage="contribution")
        frame = region.features.loc[instances]
    elif region.anchor is not None:
        frame = region.features.iloc[[0]]
    else:
        frame = region.features
    codes = Parallel(n_jobs=config.n_jobs)(
        delayed(ContributionEngine.reason_codes)(surrogate, row) for _, row in frame.iterrows()
    )
    return RegionExplanation(
        region=region,
        correlation=report,
        excluded=excluded,
        surrogate=surrogate,
        reason_codes=dict(zip(frame.index, codes)),
    )


def explain_regions(
    dataset: Dataset,
    predict_fn: PredictFn,
    rules: Sequence[Rule],
    config: Optional[ExplainerConfig] = None,
) -> List[RegionExplanation]:
    config = config or ExplainerConfig()
    return Parallel(n_jobs=config.n_jobs)(
        delayed(explain_region)(dataset, predict_fn, rule, config) for rule in rules
    )


def klime(
    dataset: Dataset,
    predict_fn: PredictFn,
    n_clusters: int,
    config: Optional[ExplainerConfig] = None,
) -> KLimeResult:
    """One surrogate per k-means cluster plus a global surrogate over all records."""
    config = config or ExplainerConfig()
    selector = RegionSelector(dataset, config)
    assignments = selector.cluster_labels(n_clusters)
    regions = selector.cluster_regions(n_clusters)
    global_model = explain_selected(selector.all_records(), predict_fn, config)
    clusters = {k: explain_selected(region, predict_fn, config) for k, region in regions.items()}
    quality = {k: round(r.surrogate.fit_quality, 3) for k, r in clusters.items()}
    logger.info(f"K-LIME fit quality: global={global_model.surrogate.fit_quality:.3f}, clusters={quality}")
    return KLimeResult(global_model=global_model, clusters=clusters, assignments=assignments)


# ------------------------------ Serialization ------------------------------

def _plain(value: Any) -> Any:
    return value.item() if isinstance(value, np.generic) else value


def surrogate_record(surrogate: SurrogateModel) -> Dict[str, Any]:
    return {
        "task": surrogate.task,
        "intercept": surrogate.intercept,
        "coefficients": [
            {"feature": t.feature, "level": _plain(t.level), "coefficient": c}
            for t, c in surrogate.coefficients.items()
        ],
        "excluded": list(surrogate.excluded),
        "alpha": surrogate.alpha,
        "l1_ratio": surrogate.l1_ratio,
        "fit_quality": surrogate.fit_quality,
        "n_records": surrogate.n_records,
    }


def reason_code_records(result: RegionExplanation, top_k: Optional[int] = None) -> List[Dict[str, Any]]:
    rows = []
    for record, codes in result.reason_codes.items():
        for rank, code in enumerate(codes[:top_k] if top_k else codes, start=1):
            rows.append({
                "region": result.region.rule,
                "record": _plain(record),
                "rank": rank,
                "feature": code.feature,
                "level": _plain(code.level),
                "value": _plain(code.value),
                "coefficient": code.coefficient,
                "strength": code.strength,
                "sign": code.sign,
            })
    return rows


def explanation_records(explanations: Iterable[Explanation]) -> List[Dict[str, Any]]:
    return [
        {
            "instance": {k: _plain(v) for k, v in e.instance.items()},
            "label": e.label,
            "predicted": e.predicted,
            "local_prediction": e.local_prediction,
            "intercept": e.intercept,
            "weights": [
                {"feature": t.feature, "level": _plain(t.level), "weight": w} for t, w in e.weights
            ],
            "score": e.score,
            "low_confidence": e.low_confidence,
            "num_samples": e.num_samples,
            "kernel_width": e.kernel_width,
        }
        for e in explanations
    ]
