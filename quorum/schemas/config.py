"""Engine configuration schema, loaded from quorum/config/defaults.toml."""

from __future__ import annotations

from pydantic import BaseModel, Field

from quorum.schemas.consensus import ConsensusOptions


class EngineConfig(BaseModel):
    """Runtime settings for a ValidationEngine."""

    min_feedback_required: int = Field(
        default=3, gt=0,
        description="Default feedback threshold for requests that omit one",
    )
    auto_close_threshold: float = Field(
        default=0.8, ge=0, le=1,
        description="Consensus level at which a decision closes the item",
    )
    auto_consensus: bool = Field(
        default=False,
        description="Compute consensus as soon as an item reaches its threshold",
    )
    log_subscriber_faults: bool = Field(
        default=True,
        description="Log exceptions raised by event subscribers",
    )
    event_history_limit: int = Field(
        default=100, ge=0,
        description="Number of published events kept in the bus history",
    )
    consensus: ConsensusOptions = Field(default_factory=ConsensusOptions)
