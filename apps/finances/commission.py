"""
Commission Calculator

Splits a gross booking amount into the platform fee, the host net and the
agent commission. Rounding always truncates toward zero and the remainder
goes to the host, so the three shares add up to the gross exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from shared.domain.exceptions import InvalidRateConfig
from shared.domain.value_objects import Money

from .conf import FinanceSettings, finance_settings

HUNDRED = Decimal("100")


def _as_decimal(value, name: str) -> Decimal:
    if isinstance(value, float):
        raise InvalidRateConfig(f"{name} must be a Decimal, not float")
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass(frozen=True)
class RateConfig:
    """Percentages of the gross amount, each in [0, 100]."""

    platform_pct: Decimal
    host_pct: Decimal
    agent_pct: Decimal
    tolerance_pct: Decimal = Decimal("0.01")

    def __post_init__(self):
        for name in ("platform_pct", "host_pct", "agent_pct", "tolerance_pct"):
            object.__setattr__(self, name, _as_decimal(getattr(self, name), name))

        for name in ("platform_pct", "host_pct", "agent_pct"):
            value = getattr(self, name)
            if value < 0 or value > HUNDRED:
                raise InvalidRateConfig(f"{name}={value} is outside [0, 100]")

        if self.tolerance_pct < 0:
            raise InvalidRateConfig("tolerance_pct cannot be negative")

        total = self.platform_pct + self.host_pct + self.agent_pct
        if abs(total - HUNDRED) > self.tolerance_pct:
            raise InvalidRateConfig(
                f"Rates add up to {total}%, expected 100% (tolerance {self.tolerance_pct}%)"
            )

    @classmethod
    def from_settings(cls, conf: FinanceSettings | None = None) -> "RateConfig":
        conf = conf or finance_settings()
        return cls(
            platform_pct=conf.platform_pct,
            host_pct=conf.host_pct,
            agent_pct=conf.agent_pct,
            tolerance_pct=conf.tolerance_pct,
        )

    def without_agent(self) -> "RateConfig":
        """Rates for bookings with no agent: the agent share goes to the platform."""
        return RateConfig(
            platform_pct=self.platform_pct + self.agent_pct,
            host_pct=self.host_pct,
            agent_pct=Decimal("0"),
            tolerance_pct=self.tolerance_pct,
        )


@dataclass(frozen=True)
class CommissionSplit:
    gross: Money
    platform_fee: Money
    host_net: Money
    agent_commission: Money

    def as_dict(self) -> dict:
        return {
            "gross": str(self.gross.amount),
            "platform_fee": str(self.platform_fee.amount),
            "host_net": str(self.host_net.amount),
            "agent_commission": str(self.agent_commission.amount),
            "currency": self.gross.currency,
        }


def split(gross: Money, rates: RateConfig) -> CommissionSplit:
    """
    Split `gross` according to `rates`.

    The platform fee and agent commission are truncated to the currency's
    minor unit; host net is whatever remains, so
    platform_fee + host_net + agent_commission == gross.
    """
    if gross.amount < 0:
        raise ValueError("Cannot split a negative amount")

    gross = gross.truncate()
    platform_fee = (gross * (rates.platform_pct / HUNDRED)).truncate()
    agent_commission = (gross * (rates.agent_pct / HUNDRED)).truncate()
    host_net = gross - platform_fee - agent_commission

    return CommissionSplit(
        gross=gross,
        platform_fee=platform_fee,
        host_net=host_net,
        agent_commission=agent_commission,
    )
