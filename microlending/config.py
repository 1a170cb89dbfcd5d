"""
config.py - Deployment-time registry configuration

Every constant the lending rules depend on lives here: the owner identity,
the credit-score threshold and bounds, the currency, the interest rate
denominator, the purpose length limit and the default grace period.

A RegistryConfig is frozen. The owner set at deployment never changes.
"""

from __future__ import annotations
from dataclasses import dataclass

from .core import SYSTEM_WALLET


DEFAULT_MIN_CREDIT_SCORE = 700
DEFAULT_MIN_SCORE = 300
DEFAULT_MAX_SCORE = 850

# Interest rates are expressed in basis points: 500 = 5%.
DEFAULT_RATE_DENOMINATOR = 10_000

DEFAULT_MAX_PURPOSE_LENGTH = 256
DEFAULT_CURRENCY = "STX"
DEFAULT_CURRENCY_NAME = "Stacks Token"

# Blocks an ACTIVE loan may run past its term before it is marked DEFAULTED.
DEFAULT_GRACE_BLOCKS = 0


@dataclass(frozen=True, slots=True)
class RegistryConfig:
    """
    Immutable configuration for one deployed LoanRegistry.

    Attributes:
        owner: Identity allowed to update credit scores
        min_credit_score: Score required to request a loan (inclusive)
        min_score: Lowest score the owner may assign
        max_score: Highest score the owner may assign
        rate_denominator: Divisor turning interest_rate into a fraction
        max_purpose_length: Longest allowed loan purpose text
        currency: Symbol of the balance unit
        currency_name: Display name of the balance unit
        default_grace_blocks: Blocks past term before an ACTIVE loan defaults
        enforce_defaults: Whether the lifecycle engine marks overdue loans DEFAULTED
    """
    owner: str
    min_credit_score: int = DEFAULT_MIN_CREDIT_SCORE
    min_score: int = DEFAULT_MIN_SCORE
    max_score: int = DEFAULT_MAX_SCORE
    rate_denominator: int = DEFAULT_RATE_DENOMINATOR
    max_purpose_length: int = DEFAULT_MAX_PURPOSE_LENGTH
    currency: str = DEFAULT_CURRENCY
    currency_name: str = DEFAULT_CURRENCY_NAME
    default_grace_blocks: int = DEFAULT_GRACE_BLOCKS
    enforce_defaults: bool = True

    def __post_init__(self):
        if not self.owner or not self.owner.strip():
            raise ValueError("owner cannot be empty")
        if self.owner == SYSTEM_WALLET:
            raise ValueError(f"owner cannot be the reserved {SYSTEM_WALLET!r} wallet")
        if self.min_score < 0:
            raise ValueError(f"min_score cannot be negative, got {self.min_score}")
        if self.max_score < self.min_score:
            raise ValueError(
                f"max_score ({self.max_score}) must be >= min_score ({self.min_score})"
            )
        if not self.min_score <= self.min_credit_score <= self.max_score:
            raise ValueError(
                f"min_credit_score {self.min_credit_score} outside "
                f"[{self.min_score}, {self.max_score}]"
            )
        if self.rate_denominator <= 0:
            raise ValueError(f"rate_denominator must be positive, got {self.rate_denominator}")
        if self.max_purpose_length <= 0:
            raise ValueError(f"max_purpose_length must be positive, got {self.max_purpose_length}")
        if not self.currency or not self.currency.strip():
            raise ValueError("currency cannot be empty")
        if self.default_grace_blocks < 0:
            raise ValueError(f"default_grace_blocks cannot be negative, got {self.default_grace_blocks}")
