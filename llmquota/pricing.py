"""Per-model token rates and the USD value of a token tally."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

_PER_MILLION = 1_000_000.0


def _rate(obj: Mapping[str, Any], key: str) -> float:
    value = obj.get(key)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key}: expected a number")
    return float(value)


@dataclass(frozen=True)
class Rates:
    """USD per million tokens for one model."""

    input: float = 0.0
    output: float = 0.0
    cache_write_5m: float = 0.0
    cache_write_1h: float = 0.0
    cache_read: float = 0.0
    estimated: bool = False

    @classmethod
    def from_json(cls, obj: Any) -> "Rates":
        if obj is None:
            return cls()
        if not isinstance(obj, dict):
            raise ValueError("model rates must be a JSON object")
        estimated = obj.get("estimated")
        if estimated is None:
            estimated = False
        if not isinstance(estimated, bool):
            raise ValueError("estimated: expected a boolean")
        return cls(
            input=_rate(obj, "input"),
            output=_rate(obj, "output"),
            cache_write_5m=_rate(obj, "cache_write_5m"),
            cache_write_1h=_rate(obj, "cache_write_1h"),
            cache_read=_rate(obj, "cache_read"),
            estimated=estimated,
        )


@dataclass(frozen=True)
class Usage:
    """A token tally split into disjoint pricing classes.

    ``input`` holds only non-cached input tokens; cached input is counted in
    ``cache_read`` so the two never overlap.
    """

    input: int = 0
    output: int = 0
    cache_write_5m: int = 0
    cache_write_1h: int = 0
    cache_read: int = 0


@dataclass(frozen=True)
class Pricing:
    """Exact-match model to rates lookup."""

    models: Mapping[str, Rates] = field(default_factory=dict)

    def lookup(self, model: str) -> Optional[Rates]:
        """Find rates for model, retrying with a trailing "[...]" suffix removed."""
        rates = self.models.get(model)
        if rates is not None:
            return rates
        base, bracket, _rest = model.partition("[")
        if bracket and base:
            return self.models.get(base)
        return None

    def price(self, model: str, usage: Usage) -> tuple[float, bool, bool]:
        """Return (amount in USD, whether the model is known, whether it is an estimate)."""
        rates = self.lookup(model)
        if rates is None:
            return 0.0, False, False
        amount = (
            usage.input / _PER_MILLION * rates.input
            + usage.output / _PER_MILLION * rates.output
            + usage.cache_write_5m / _PER_MILLION * rates.cache_write_5m
            + usage.cache_write_1h / _PER_MILLION * rates.cache_write_1h
            + usage.cache_read / _PER_MILLION * rates.cache_read
        )
        return amount, True, rates.estimated


def load_pricing(data: bytes | str) -> Pricing:
    """Parse a pricing table of the form {"models": {name: rates}}."""
    try:
        document = json.loads(data)
        if document is None:
            document = {}
        if not isinstance(document, dict):
            raise ValueError("pricing table must be a JSON object")
        models = document.get("models")
        if models is None:
            models = {}
        if not isinstance(models, dict):
            raise ValueError("models: expected an object")
        return Pricing({name: Rates.from_json(rates) for name, rates in models.items()})
    except ValueError as err:
        raise ValueError(f"parse pricing table: {err}") from err