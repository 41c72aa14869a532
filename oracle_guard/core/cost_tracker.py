"""
Token and cost accounting.

Accumulates per-call usage against a pricing table, enforces an optional
budget ceiling and produces rollups and usage reports.
"""

import json
import logging
import threading
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Union

from .pricing import ModelPricing, PricingTable, calculate_cost_decimal, default_pricing
from .results import CallType
from .token_counter import TokenUsage
from ..storage.models import UsageEntry

if TYPE_CHECKING:
    from ..storage.repository import UsageRepository

logger = logging.getLogger(__name__)

DEFAULT_ALERT_THRESHOLD = 0.8


@dataclass
class UsageTotals:
    """Aggregated usage over a set of entries."""
    calls: int = 0
    failed_calls: int = 0
    input_tokens: int = 0
    completion_tokens: int = 0
    cost: Decimal = Decimal("0")

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.completion_tokens

    def add(self, entry: UsageEntry) -> None:
        self.calls += 1
        if not entry.success:
            self.failed_calls += 1
        self.input_tokens += entry.input_tokens
        self.completion_tokens += entry.completion_tokens
        self.cost += Decimal(str(entry.cost))

    def to_dict(self) -> Dict[str, float]:
        return {
            "calls": self.calls,
            "failed_calls": self.failed_calls,
            "input_tokens": self.input_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "cost": float(self.cost),
        }


@dataclass(frozen=True)
class UsageReport:
    """Point-in-time usage report suitable for export."""
    generated_at: datetime
    totals: Dict[str, float]
    by_model: Dict[str, Dict[str, float]]
    by_call_type: Dict[str, Dict[str, float]]
    hourly: Dict[str, Dict[str, float]]
    daily: Dict[str, Dict[str, float]]
    budget_limit: Optional[float] = None
    remaining_budget: Optional[float] = None
    budget_exceeded: bool = False

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["generated_at"] = self.generated_at.isoformat()
        return data


class CostTracker:
    """Running usage and cost totals with an optional budget.

    Cost of a call is input/1000 * input price + completion/1000 * completion
    price, rounded up to 6 decimal places. Models missing from the pricing
    table are recorded at zero cost.
    """

    def __init__(
        self,
        pricing: Optional[PricingTable] = None,
        budget_limit: Optional[float] = None,
        alert_threshold: float = DEFAULT_ALERT_THRESHOLD,
        clock: Callable[[], datetime] = datetime.now,
        repository: Optional["UsageRepository"] = None,
    ):
        """Initialize an empty tracker.

        Args:
            pricing: Pricing table; the built-in rate card if omitted
            budget_limit: Budget ceiling in USD, None for unlimited
            alert_threshold: Fraction of the budget that triggers an alert (0-1)
            clock: Source of entry timestamps
            repository: Optional ledger every entry is appended to

        Raises:
            ValueError: If the budget is negative or the threshold out of range
        """
        if budget_limit is not None and budget_limit < 0:
            raise ValueError("budget_limit cannot be negative")
        if not 0 < alert_threshold <= 1:
            raise ValueError("alert_threshold must be in (0, 1]")
        self.pricing = pricing if pricing is not None else default_pricing()
        self.budget_limit = budget_limit
        self.alert_threshold = alert_threshold
        self.repository = repository
        self._clock = clock
        self._entries: List[UsageEntry] = []
        self._totals = UsageTotals()
        self._alerted = False
        self._lock = threading.Lock()

    def register_model(
        self,
        model: str,
        input_cost_per_1k: Union[str, Decimal],
        completion_cost_per_1k: Union[str, Decimal],
    ) -> None:
        self.pricing.register(model, ModelPricing(
            input_cost_per_1k=Decimal(str(input_cost_per_1k)),
            completion_cost_per_1k=Decimal(str(completion_cost_per_1k)),
        ))

    def estimate_cost(self, model: str, input_tokens: int, completion_tokens: int) -> float:
        return float(self._cost(model, input_tokens, completion_tokens))

    def record_usage(
        self,
        model: str,
        call_type: Union[CallType, str],
        input_tokens: int,
        completion_tokens: int,
        success: bool = True,
        provider_name: str = "",
    ) -> UsageEntry:
        """Record one call.

        Args:
            model: Model that served the call
            call_type: Call category
            input_tokens: Prompt tokens consumed
            completion_tokens: Completion tokens produced
            success: Whether the call succeeded
            provider_name: Provider that served the call

        Returns:
            The appended usage entry
        """
        if input_tokens < 0 or completion_tokens < 0:
            raise ValueError("Token counts cannot be negative")
        cost = self._cost(model, input_tokens, completion_tokens)
        entry = UsageEntry(
            timestamp=self._clock(),
            model=model,
            call_type=call_type.value if isinstance(call_type, CallType) else call_type,
            input_tokens=input_tokens,
            completion_tokens=completion_tokens,
            cost=float(cost),
            success=success,
            provider_name=provider_name,
        )
        with self._lock:
            self._entries.append(entry)
            self._totals.add(entry)
            alert = self._crossed_threshold() and not self._alerted
            if alert:
                self._alerted = True
            spent = float(self._totals.cost)

        if alert:
            logger.warning(
                "Oracle spend $%.6f has reached %.0f%% of the $%.2f budget",
                spent, self.alert_threshold * 100, self.budget_limit,
            )
        if self.repository is not None:
            self.repository.record(entry)
        return entry

    def entries(self) -> List[UsageEntry]:
        with self._lock:
            return list(self._entries)

    def totals(self) -> UsageTotals:
        with self._lock:
            return UsageTotals(**vars(self._totals))

    def total_cost(self) -> float:
        with self._lock:
            return float(self._totals.cost)

    def usage_by_model(self) -> Dict[str, UsageTotals]:
        return self._group(lambda entry: entry.model)

    def usage_by_call_type(self) -> Dict[str, UsageTotals]:
        return self._group(lambda entry: entry.call_type)

    def hourly_rollup(self) -> Dict[str, UsageTotals]:
        """Totals per clock hour, keyed "YYYY-MM-DD HH:00", oldest first."""
        return self._group(lambda entry: entry.timestamp.strftime("%Y-%m-%d %H:00"))

    def daily_rollup(self) -> Dict[str, UsageTotals]:
        """Totals per calendar day, keyed "YYYY-MM-DD", oldest first."""
        return self._group(lambda entry: entry.timestamp.strftime("%Y-%m-%d"))

    def usage_in_last(self, window: timedelta) -> UsageTotals:
        cutoff = self._clock() - window
        totals = UsageTotals()
        for entry in self.entries():
            if entry.timestamp >= cutoff:
                totals.add(entry)
        return totals

    def average_tokens_per_call(self) -> float:
        with self._lock:
            if not self._totals.calls:
                return 0.0
            return self._totals.total_tokens / self._totals.calls

    def is_budget_exceeded(self) -> bool:
        if self.budget_limit is None:
            return False
        return self.total_cost() >= self.budget_limit

    def remaining_budget(self) -> Optional[float]:
        """USD left before the ceiling, never negative. None if unlimited."""
        if self.budget_limit is None:
            return None
        return max(0.0, self.budget_limit - self.total_cost())

    def should_alert_budget(self) -> bool:
        with self._lock:
            return self._crossed_threshold()

    def summary(self) -> Dict[str, object]:
        totals = self.totals()
        return {
            **totals.to_dict(),
            "average_tokens_per_call": self.average_tokens_per_call(),
            "budget_limit": self.budget_limit,
            "remaining_budget": self.remaining_budget(),
            "budget_exceeded": self.is_budget_exceeded(),
            "budget_alert": self.should_alert_budget(),
            "by_call_type": {
                name: group.to_dict() for name, group in self.usage_by_call_type().items()
            },
        }

    def format_summary(self) -> str:
        totals = self.totals()
        lines = [
            "Oracle Usage Summary",
            f"  Calls: {totals.calls} ({totals.failed_calls} failed)",
            f"  Input tokens: {totals.input_tokens}",
            f"  Completion tokens: {totals.completion_tokens}",
            f"  Total cost: ${float(totals.cost):.6f}",
            f"  Avg tokens/call: {self.average_tokens_per_call():.1f}",
        ]
        if self.budget_limit is not None:
            lines.append(f"  Budget: ${self.budget_limit:.2f} (remaining ${self.remaining_budget():.6f})")
            if self.is_budget_exceeded():
                lines.append("  WARNING: budget exceeded")
        for name, group in self.usage_by_call_type().items():
            lines.append(f"  {name}: {group.calls} calls, {group.total_tokens} tokens, ${float(group.cost):.6f}")
        return "\n".join(lines)

    def generate_report(self) -> UsageReport:
        def as_dicts(groups: Dict[str, UsageTotals]) -> Dict[str, Dict[str, float]]:
            return {key: group.to_dict() for key, group in groups.items()}

        return UsageReport(
            generated_at=self._clock(),
            totals=self.totals().to_dict(),
            by_model=as_dicts(self.usage_by_model()),
            by_call_type=as_dicts(self.usage_by_call_type()),
            hourly=as_dicts(self.hourly_rollup()),
            daily=as_dicts(self.daily_rollup()),
            budget_limit=self.budget_limit,
            remaining_budget=self.remaining_budget(),
            budget_exceeded=self.is_budget_exceeded(),
        )

    def export_usage_report(self, path: Union[str, Path]) -> Path:
        """Write the usage report as JSON. Returns the written path."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w") as f:
            json.dump(self.generate_report().to_dict(), f, indent=2)
        return target

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._totals = UsageTotals()
            self._alerted = False

    def _cost(self, model: str, input_tokens: int, completion_tokens: int) -> Decimal:
        if not self.pricing.has_model(model):
            return Decimal("0")
        usage = TokenUsage(input_tokens=input_tokens, completion_tokens=completion_tokens)
        return calculate_cost_decimal(self.pricing.get_pricing(model), usage)

    def _crossed_threshold(self) -> bool:
        if not self.budget_limit:
            return False
        return self._totals.cost >= Decimal(str(self.budget_limit)) * Decimal(str(self.alert_threshold))

    def _group(self, key: Callable[[UsageEntry], str]) -> Dict[str, UsageTotals]:
        groups: Dict[str, UsageTotals] = OrderedDict()
        for entry in self.entries():
            groups.setdefault(key(entry), UsageTotals()).add(entry)
        return dict(groups)
