# Reason codes
# ---------------------------------------------------------
# What: Decomposes a surrogate's prediction for one instance into signed
#       per-feature contributions (strength = coefficient * encoded value).
# How: The instance is encoded directly against the surrogate's FeatureTerm
#       schema: numeric terms take the raw value, categorical terms are 1 for
#       the instance's own level and 0 otherwise. Inactive levels are skipped.
# Why: intercept + sum(strengths) reproduces the surrogate's decision value,
#       so the codes account for the whole local prediction.


import logging
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from Surrogate_Methods.Data_Model import (
    FeatureTerm,
    ReasonCode,
    SurrogateModel,
    as_feature_vector,
    check_features,
)
from Surrogate_Methods.Errors import FeatureMismatch

logger = logging.getLogger(__name__)


class ContributionEngine:
    """Per-instance contributions under one SurrogateModel."""

    @staticmethod
    def encode(surrogate: SurrogateModel, instance: Mapping[str, Any]) -> Dict[FeatureTerm, float]:
        instance = as_feature_vector(instance)
        check_features(surrogate.input_features, instance, stage="contribution")
        encoded: Dict[FeatureTerm, float] = {}
        for term in surrogate.coefficients:
            value = instance[term.feature]
            if term.is_indicator:
                encoded[term] = 1.0 if value == term.level else 0.0
                continue
            try:
                encoded[term] = float(value)
            except (TypeError, ValueError):
                raise FeatureMismatch(f"numeric feature {term.feature!r} got {value!r}", stage="contribution")
        return encoded

    @staticmethod
    def reason_codes(surrogate: SurrogateModel, instance: Mapping[str, Any]) -> List[ReasonCode]:
        instance = as_feature_vector(instance)
        encoded = ContributionEngine.encode(surrogate, instance)
        codes = []
        for term, coefficient in surrogate.nonzero.items():
            if term.is_indicator and encoded[term] == 0.0:
                continue
            strength = coefficient * encoded[term]
            if strength == 0.0:
                continue
            codes.append(ReasonCode(
                feature=term.feature,
                level=term.level,
                value=instance[term.feature],
                coefficient=coefficient,
                strength=float(strength),
                sign=1 if coefficient > 0 else -1,
            ))
        codes.sort(key=lambda code: abs(code.strength), reverse=True)
        return codes

    @staticmethod
    def decision_value(surrogate: SurrogateModel, instance: Mapping[str, Any]) -> float:
        encoded = ContributionEngine.encode(surrogate, instance)
        return surrogate.intercept + float(sum(c * encoded[t] for t, c in surrogate.coefficients.items()))

    @staticmethod
    def predict(surrogate: SurrogateModel, instance: Mapping[str, Any]) -> float:
        value = ContributionEngine.decision_value(surrogate, instance)
        if surrogate.task == "classification":
            return float(1.0 / (1.0 + np.exp(-value)))
        return value

    @staticmethod
    def reason_code_frame(
        surrogate: SurrogateModel,
        frame: pd.DataFrame,
        top_k: Optional[int] = None,
        n_jobs: int = 1,
    ) -> pd.DataFrame:
        """Long-format table: one row per (record, reason code), ranked within each record."""
        records = Parallel(n_jobs=n_jobs)(
            delayed(ContributionEngine.reason_codes)(surrogate, row) for _, row in frame.iterrows()
        )
        rows = []
        for index, codes in zip(frame.index, records):
            for rank, code in enumerate(codes[:top_k] if top_k else codes, start=1):
                rows.append({
                    "record": index,
                    "rank": rank,
                    "feature": code.feature,
                    "level": code.level,
                    "value": code.value,
                    "coefficient": code.coefficient,
                    "strength": code.strength,
                    "sign": code.sign,
                })
        logger.info(f"Computed reason codes for {len(frame)} records")
        return pd.DataFrame(rows, columns=["record", "rank", "feature", "level", "value", "coefficient", "strength", "sign"])
