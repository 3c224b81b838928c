from factoring_review.pipeline.scoring.engine import (
    Band,
    ScoringConfig,
    ScoringEngine,
    ScoringInputs,
)

__all__ = ["Band", "ScoringConfig", "ScoringEngine", "ScoringInputs"]
