"""Bot policy dataclass.

The trading rules the orchestrator applies to every emitted signal.
"""

from dataclasses import asdict, dataclass

MARGIN_TYPES = ("ISOLATED", "CROSSED")


@dataclass(frozen=True)
class BotPolicy:
    """Trading policy for the bot.

    Replaced wholesale through ``TradingBot.configure``; never mutated.
    """

    enabled: bool = False
    min_score: int = 60
    min_order_interval_ms: int = 5 * 60 * 1000
    account_percentage: float = 10.0
    leverage: int = 15
    margin_type: str = "ISOLATED"

    def __post_init__(self) -> None:
        if not isinstance(self.enabled, bool):
            raise ValueError(f"enabled must be a boolean, got {self.enabled!r}")
        if not 0 <= self.min_score <= 100:
            raise ValueError(f"min_score must be 0–100, got {self.min_score}")
        if self.min_order_interval_ms < 0:
            raise ValueError(
                f"min_order_interval_ms must be >= 0, got {self.min_order_interval_ms}"
            )
        if not 0 < self.account_percentage <= 100:
            raise ValueError(
                f"account_percentage must be in (0, 100], got {self.account_percentage}"
            )
        if not 1 <= self.leverage <= 125:
            raise ValueError(f"leverage must be 1–125, got {self.leverage}")
        if self.margin_type not in MARGIN_TYPES:
            raise ValueError(
                f"margin_type must be one of {', '.join(MARGIN_TYPES)}, got {self.margin_type!r}"
            )

    def to_dict(self) -> dict:
        return asdict(self)
