"""
Market Policy - tunable constants of matching and reputation

Every number the core uses to score, bound or time-box participants lives
here, so deployments can adjust them without touching handler code.
"""

from decimal import Decimal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MarketPolicy(BaseSettings):
    """
    Marketplace parameters

    Defaults reproduce the platform's production behaviour: civil scores
    between 0 and 1000 starting at 500, a 50-entry score history, +10 for a
    completed order, +5 for each group participant, -15 for a vendor
    cancellation, and a 40/35/25 weighted trust score.

    Any field can be overridden from the environment with the MARKET_ prefix,
    e.g. MARKET_COMPLETION_DELTA=12.
    """

    policy_version: str = Field(default="1.0", description="Policy version")

    # Civil score
    civil_score_min: int = Field(default=0, description="Lower clamp for civil score")
    civil_score_max: int = Field(default=1000, description="Upper clamp for civil score")
    civil_score_initial: int = Field(
        default=500, description="Civil score of a party on first event"
    )
    score_history_capacity: int = Field(
        default=50, ge=1, description="Score history entries kept per party"
    )
    completion_delta: int = Field(
        default=10, description="Civil score change for the vendor of a completed order"
    )
    participant_completion_delta: int = Field(
        default=5, description="Civil score change for each group participant"
    )
    cancellation_delta: int = Field(
        default=-15, description="Civil score change for a vendor-driven cancellation"
    )

    # Trust score (vendors)
    trust_weight_payment: float = Field(default=40.0, ge=0.0)
    trust_weight_completion: float = Field(default=35.0, ge=0.0)
    trust_weight_rating: float = Field(default=25.0, ge=0.0)
    trust_neutral_ratio: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Ratio used for a trust sub-metric whose denominator is zero",
    )

    # Ratings
    rating_min: int = Field(default=1)
    rating_max: int = Field(default=5)

    # Orders
    payment_terms_days: int = Field(
        default=7, ge=0, description="Days after acceptance before payment is late"
    )

    # Auctions
    auction_opening_bid_below_start: bool = Field(
        default=True,
        description=(
            "Accept an opening bid below starting_price; later bids must "
            "still exceed the current price"
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="MARKET_",
        frozen=True,
        json_schema_extra={
            "description": "Matching and reputation parameters of the marketplace core"
        },
    )

    @model_validator(mode="after")
    def validate_bounds(self) -> "MarketPolicy":
        if self.civil_score_min >= self.civil_score_max:
            raise ValueError("civil_score_min must be below civil_score_max")
        if not self.civil_score_min <= self.civil_score_initial <= self.civil_score_max:
            raise ValueError("civil_score_initial must lie within the civil score bounds")
        if self.rating_min >= self.rating_max:
            raise ValueError("rating_min must be below rating_max")
        return self

    @property
    def trust_score_max(self) -> float:
        return (
            self.trust_weight_payment
            + self.trust_weight_completion
            + self.trust_weight_rating
        )

    def clamp_civil_score(self, score: int) -> int:
        return max(self.civil_score_min, min(self.civil_score_max, score))

    def is_valid_rating(self, rating: int | Decimal) -> bool:
        return self.rating_min <= rating <= self.rating_max

    @classmethod
    def from_env(cls) -> "MarketPolicy":
        """Build a policy from MARKET_* environment overrides"""
        return cls()
