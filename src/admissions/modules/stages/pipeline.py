"""
Competition Pipeline

The fixed, linear sequence of stages. Read-only configuration: the stage
engine never mutates it.
"""

from dataclasses import dataclass
from decimal import Decimal

PARTICIPATION_PAYMENT = "participation"


@dataclass(frozen=True)
class Stage:
    index: int
    name: str
    payment_type: str | None = None
    fee_amount: Decimal | None = None

    @property
    def requires_payment(self) -> bool:
        return self.payment_type is not None


PIPELINE: tuple[Stage, ...] = (
    Stage(0, "Registration"),
    Stage(1, "Idea Submission"),
    Stage(2, "Prototype", PARTICIPATION_PAYMENT, Decimal("1000.00")),
    Stage(3, "Grand Finale"),
)

FINAL_STAGE = PIPELINE[-1]


def get_stage(index: int) -> Stage | None:
    if 0 <= index < len(PIPELINE):
        return PIPELINE[index]
    return None


def stage_name(index: int) -> str:
    stage = get_stage(index)
    return stage.name if stage else f"Stage {index}"


def next_stage(index: int) -> Stage | None:
    return get_stage(index + 1)


def is_final(index: int) -> bool:
    return index == FINAL_STAGE.index


def default_fee(payment_type: str) -> Decimal | None:
    """Configured fee for a payment type, or None if the type is unknown."""
    for stage in PIPELINE:
        if stage.payment_type == payment_type:
            return stage.fee_amount
    return None
