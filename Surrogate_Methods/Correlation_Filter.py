# Correlated-feature elimination
# ---------------------------------------------------------
# What: Reports pairs of numeric features whose absolute Pearson correlation
#       exceeds a threshold, then picks which member of each pair to drop.
# How: pandas DataFrame.corr over the numeric columns of a region; the upper
#       triangle gives each unordered pair once, in column order.
# Why: Near-duplicate features make the surrogate's design matrix close to
#       singular and split one effect across two coefficients.


import logging
from typing import Callable, Dict, Iterable, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from Surrogate_Methods.Data_Model import CorrelatedPair, CorrelationReport
from Surrogate_Methods.Errors import FeatureMismatch

logger = logging.getLogger(__name__)

DropPolicy = Union[str, Callable[[CorrelatedPair, CorrelationReport], str]]


class FeatureCorrelationFilter:
    def __init__(self, threshold: float = 0.8, policy: DropPolicy = "first", keep: Iterable[str] = ()):
        if not 0.0 < threshold <= 1.0:
            raise ValueError(f"threshold must be in (0, 1], got {threshold}")
        if isinstance(policy, str) and policy not in ("first", "second", "most_correlated"):
            raise ValueError(f"Unsupported drop policy: {policy}")
        self.threshold = threshold
        self.policy = policy
        self.keep = frozenset(keep)

    def report(self, frame: pd.DataFrame, columns: Optional[Sequence[str]] = None) -> CorrelationReport:
        if columns is not None:
            missing = [c for c in columns if c not in frame.columns]
            if missing:
                raise FeatureMismatch(f"columns not in frame: {missing}", stage="filtering")
            frame = frame[list(columns)]
        numeric = frame.select_dtypes(include=[np.number]).select_dtypes(exclude=["bool"])
        names = list(numeric.columns)
        if len(names) < 2:
            return CorrelationReport(pairs=(), threshold=self.threshold)

        corr = numeric.corr(method="pearson").to_numpy()
        pairs = []
        for i in range(len(names)):
            for j in range(i + 1, len(names)):
                r = corr[i, j]
                # zero-variance columns give NaN, which never counts as correlated
                if np.isfinite(r) and abs(r) > self.threshold:
                    pairs.append(CorrelatedPair(a=names[i], b=names[j], value=float(r)))
        pairs.sort(key=lambda p: abs(p.value), reverse=True)
        logger.info(f"{len(pairs)} feature pairs with |r| > {self.threshold} among {len(names)} numeric features")
        return CorrelationReport(pairs=tuple(pairs), threshold=self.threshold)

    def exclusions(self, report: CorrelationReport) -> Tuple[str, ...]:
        dropped = []
        for pair in report:
            if pair.a in dropped or pair.b in dropped:
                continue
            victim = self._choose(pair, report)
            if victim is None:
                continue
            dropped.append(victim)
            survivor = pair.b if victim == pair.a else pair.a
            logger.info(f"Dropping {victim} (r={pair.value:.3f} with {survivor})")
        return tuple(dropped)

    def _choose(self, pair: CorrelatedPair, report: CorrelationReport) -> Optional[str]:
        if pair.a in self.keep and pair.b in self.keep:
            return None
        if pair.a in self.keep:
            return pair.b
        if pair.b in self.keep:
            return pair.a

        if callable(self.policy):
            victim = self.policy(pair, report)
            if victim not in (pair.a, pair.b):
                raise ValueError(f"drop policy returned {victim!r}, expected {pair.a!r} or {pair.b!r}")
            return victim
        if self.policy == "first":
            return pair.b
        if self.policy == "second":
            return pair.a
        counts = _pair_counts(report)
        return pair.a if counts[pair.a] > counts[pair.b] else pair.b


def _pair_counts(report: CorrelationReport) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for pair in report:
        counts[pair.a] = counts.get(pair.a, 0) + 1
        counts[pair.b] = counts.get(pair.b, 0) + 1
    return counts
