# Error taxonomy for the surrogate explanation stages
# ---------------------------------------------------------
# Every failure names the stage that produced it (selection, filtering,
# fitting, contribution) so a caller can retry the right step:
#   EmptyRegion      -> pick another region rule
#   SingularFit      -> re-run the correlation filter with a lower threshold
#   FeatureMismatch  -> caller error, the feature sets disagree
# LowConfidenceFit is a warning attached to a result that is still returned.


from typing import Iterable, Optional


class ExplanationError(Exception):
    """Base class for stage-tagged explanation failures."""

    stage = "explanation"

    def __init__(self, message: str, stage: Optional[str] = None):
        if stage is not None:
            self.stage = stage
        self.message = message
        super().__init__(f"[{self.stage}] {message}")


class EmptyRegion(ExplanationError):
    stage = "selection"


class SingularFit(ExplanationError):
    stage = "fitting"


class FeatureMismatch(ExplanationError):
    stage = "contribution"

    @classmethod
    def between(
        cls,
        expected: Iterable[str],
        received: Iterable[str],
        stage: Optional[str] = None,
    ) -> "FeatureMismatch":
        expected, received = list(expected), list(received)
        missing = [f for f in expected if f not in set(received)]
        unexpected = [f for f in received if f not in set(expected)]
        return cls(f"feature sets differ (missing={missing}, unexpected={unexpected})", stage=stage)


class LowConfidenceFit(UserWarning):
    """Local fit diagnostic fell below the configured minimum quality."""
