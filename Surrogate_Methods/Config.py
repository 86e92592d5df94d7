"""
Configuration shared by every explanation component.

One frozen value is built per run and passed into each component; nothing
reads configuration from module state.
"""

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional, Tuple

import yaml


TASKS = ("regression", "classification")
DROP_POLICIES = ("first", "second", "most_correlated")
SAMPLING = ("gaussian", "quartile")
SELECTION = ("bic", "aic", "cv")
FEATURE_SELECTION = ("auto", "forward_selection", "highest_weights", "lasso_path", "none")
LOCAL_MODELS = ("linear", "logistic")


@dataclass(frozen=True)
class ExplainerConfig:
    """Configuration for region surrogates and perturbation explanations."""

    task: str = "regression"

    # Correlated-feature elimination
    correlation_threshold: float = 0.8
    drop_policy: str = "first"
    keep_features: Tuple[str, ...] = ()

    # Perturbation sampling
    num_samples: int = 5000
    kernel_width: Optional[float] = None  # None -> 0.75 * sqrt(n_features)
    sampling: str = "gaussian"
    random_state: int = 42

    # Surrogate regularization path
    alpha_min: float = 1e-4
    alpha_max: float = 10.0
    n_alphas: int = 30
    l1_ratios: Tuple[float, ...] = (0.5,)
    selection: str = "bic"
    cv_folds: int = 5
    max_iter: int = 5000
    decision_threshold: float = 0.5

    # Reporting
    top_k: int = 5
    n_labels: int = 1
    feature_selection: str = "auto"
    local_model: str = "linear"
    min_fit_quality: float = 0.5

    n_jobs: int = 1

    def __post_init__(self):
        # YAML and JSON hand back lists
        object.__setattr__(self, "keep_features", tuple(self.keep_features))
        object.__setattr__(self, "l1_ratios", tuple(float(r) for r in self.l1_ratios))
        self._validate()

    def _validate(self) -> None:
        choices = {
            "task": TASKS,
            "drop_policy": DROP_POLICIES,
            "sampling": SAMPLING,
            "selection": SELECTION,
            "feature_selection": FEATURE_SELECTION,
            "local_model": LOCAL_MODELS,
        }
        for name, allowed in choices.items():
            if getattr(self, name) not in allowed:
                raise ValueError(f"{name} must be one of {allowed}, got {getattr(self, name)!r}")
        if not 0.0 < self.correlation_threshold <= 1.0:
            raise ValueError(f"correlation_threshold must be in (0, 1], got {self.correlation_threshold}")
        if self.num_samples < 2:
            raise ValueError("num_samples must be at least 2 (anchor plus one neighbor)")
        if self.kernel_width is not None and self.kernel_width <= 0:
            raise ValueError("kernel_width must be positive")
        if not 0.0 < self.alpha_min < self.alpha_max:
            raise ValueError("regularization range requires 0 < alpha_min < alpha_max")
        if self.n_alphas < 1:
            raise ValueError("n_alphas must be >= 1")
        if not self.l1_ratios or any(not 0.0 < r <= 1.0 for r in self.l1_ratios):
            raise ValueError(f"l1_ratios must be non-empty values in (0, 1], got {self.l1_ratios}")
        if self.cv_folds < 2:
            raise ValueError("cv_folds must be >= 2")
        if not 0.0 < self.decision_threshold < 1.0:
            raise ValueError("decision_threshold must be in (0, 1)")
        if self.top_k < 1 or self.n_labels < 1:
            raise ValueError("top_k and n_labels must be >= 1")

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "ExplainerConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {unknown}")
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: str) -> "ExplainerConfig":
        with open(path, "r") as f:
            values = yaml.safe_load(f) or {}
        return cls.from_dict(values)

    def override(self, **changes: Any) -> "ExplainerConfig":
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes)
