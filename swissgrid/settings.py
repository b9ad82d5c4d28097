"""
Runtime configuration for a SwissGrid session.

Every tunable number of the simulation lives here rather than in the
engine, so balancing variants differ only by their settings. Values can be
overridden through SWISSGRID_* environment variables.
"""

import os
from dataclasses import dataclass, fields


@dataclass(frozen=True)
class GameSettings:
    # ── Turn / money ─────────────────────────────────────────────────
    n_turns: int = 10
    start_money: int = 1000
    budget_per_turn: int = 1000
    loan_amount: int = 500

    # ── Bars ─────────────────────────────────────────────────────────
    bar_max: int = 200              # energy bar scale
    max_pollution: int = 200        # pollution that maps to a full pollution bar
    support_default: int = 60

    # ── Demand estimate (winter, summer) ─────────────────────────────
    demand_initial_winter: float = 120.0
    demand_initial_summer: float = 90.0
    demand_increment_winter: float = 4.0
    demand_increment_summer: float = 3.0

    # ── Imports ──────────────────────────────────────────────────────
    import_unit_cost: float = 2.0
    import_green_multiplier: float = 1.5
    import_unit_pollution: float = 0.5

    # ── Shocks ───────────────────────────────────────────────────────
    shock_probability: int = 80
    forced_shock_turn: int = 3
    weather_factor: float = 0.5

    # ── Plant lifecycle ──────────────────────────────────────────────
    nuclear_life_span: int = 5
    default_life_span: int = 10

    # ── Remote model ─────────────────────────────────────────────────
    offline: bool = True
    model_url: str = ""
    model_timeout: float = 10.0
    years_per_turn: int = 3
    weeks_per_year: int = 52

    # ── Server ───────────────────────────────────────────────────────
    rules_file: str = ""            # JSON rule book; empty uses the built-in catalog
    host: str = "0.0.0.0"
    port: int = 8765
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ=None):
        """Build settings from SWISSGRID_<FIELD> variables, falling back to defaults."""
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(f"SWISSGRID_{f.name.upper()}")
            if raw is None or raw.strip() == "":
                continue
            overrides[f.name] = _coerce(f.name, f.type, raw.strip())
        return cls(**overrides)


def _coerce(name, kind, raw):
    kind = kind if isinstance(kind, str) else kind.__name__
    try:
        if kind == "bool":
            lowered = raw.lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
            raise ValueError(raw)
        if kind == "int":
            return int(raw)
        if kind == "float":
            return float(raw)
    except ValueError:
        raise ValueError(f"Invalid value for SWISSGRID_{name.upper()}: {raw!r}")
    return raw
