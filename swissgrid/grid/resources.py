"""
Resource aggregation.

Turns the session (plants, imports, demand estimate or remote model,
shock side effects) into the ResourceSnapshot the UI reads, and keeps the
money ledger and support value.

Energy per season:
  raw      = Σ alive capacity × availability  (or the model's per-type sum)
  imported = max(0, demand − raw) × percentage / 100
  total    = raw + imported, surplus = total − bar_max, shown clamped
"""

import math

from swissgrid.grid.model import model_supply, models_valid
from swissgrid.grid.plants import (
    aggregate_environment, aggregate_production_cost, aggregate_supply,
)
from swissgrid.grid.types import PlantType, Season


def clamp(value, low, high):
    return max(low, min(high, value))


def clamp01(value):
    return clamp(value, 0.0, 1.0)


# ── Energy ───────────────────────────────────────────────────────────

def uses_model(state):
    return not state["offline"] and models_valid(state)


def weather_factors(state, settings):
    """Availability scaling for wind and solar while severe weather is active."""
    if not state["shock"]["severe_weather"]:
        return {}
    return {PlantType.WIND.value: settings.weather_factor,
            PlantType.SOLAR.value: settings.weather_factor}


def raw_supply(state, season, settings):
    factors = weather_factors(state, settings)
    if uses_model(state):
        return model_supply(state["models"][season.value], factors)
    return aggregate_supply(state["plants"], season, factors)


def demand_for(state, season):
    if uses_model(state):
        return state["models"][season.value]["demand"]
    return state["demand"][season.value]


def shortfall(demand, supply):
    return max(0.0, demand - supply)


def shortfall_percentage(demand, supply):
    """Share of demand not covered by own production; 0 for zero demand."""
    if demand <= 0:
        return 0.0
    return shortfall(demand, supply) / demand * 100


def imported_amount(state, season, demand, supply):
    imports = state["imports"]
    if season is Season.SUMMER and not imports["summer"]:
        return 0.0
    return shortfall(demand, supply) * imports["percentage"] / 100


def compute_energy(state, settings):
    energy = {}
    for season in Season:
        raw = raw_supply(state, season, settings)
        demand = demand_for(state, season)
        imported = imported_amount(state, season, demand, raw)
        total = raw + imported
        key = season.value
        energy[f"raw_supply_{key}"] = raw
        energy[f"supply_{key}"] = clamp(total, 0, settings.bar_max)
        energy[f"demand_{key}"] = clamp(demand, 0, settings.bar_max)
        energy[f"surplus_{key}"] = total - settings.bar_max
        energy[f"imported_{key}"] = imported
    energy["imported_total"] = energy["imported_winter"] + energy["imported_summer"]
    energy["import_target"] = shortfall_percentage(
        demand_for(state, Season.WINTER), energy["raw_supply_winter"])
    return energy


def import_cost(imported_total, imports, settings):
    cost = imported_total * settings.import_unit_cost
    if imports["green"]:
        cost *= settings.import_green_multiplier
    return cost


def import_pollution(imported_total, imports, settings):
    if imports["green"]:
        return 0
    return math.ceil(imported_total * settings.import_unit_pollution)


# ── Environment ──────────────────────────────────────────────────────

def compute_environment(plants, imported_pollution, environment_shock, settings):
    agg = aggregate_environment(plants, imported_pollution)
    land_use = clamp01(agg["land_use"])
    biodiversity = clamp01(1 - agg["biodiversity"])
    total_pollution = agg["pollution"] + imported_pollution
    pollution_bar = clamp01(total_pollution / settings.max_pollution)
    bar = clamp01(((1 - land_use) + biodiversity + (1 - pollution_bar)) / 3 + environment_shock)
    return {
        "land_use": land_use * 100,
        "biodiversity": biodiversity * 100,
        "pollution": agg["pollution"],
        "import_pollution": imported_pollution,
        "total_pollution": total_pollution,
        "pollution_bar": pollution_bar,
        "bar": bar,
    }


# ── Snapshot ─────────────────────────────────────────────────────────

def compute_snapshot(state, settings):
    """Recompute every resource, refresh the money ledger and store the snapshot."""
    energy = compute_energy(state, settings)
    money = state["money"]
    money["production"] = aggregate_production_cost(state["plants"])
    money["imports"] = import_cost(energy["imported_total"], state["imports"], settings)
    money["in_debt"] = money["money"] < 0

    pollution = import_pollution(energy["imported_total"], state["imports"], settings)
    environment = compute_environment(
        state["plants"], pollution, state["environment_shock"], settings)

    snapshot = {
        "energy": energy,
        "environment": environment,
        "support": state["support"],
        "money": dict(money),
    }
    state["resources"] = snapshot
    return snapshot


# ── Money / Support ──────────────────────────────────────────────────

def _update_debt(money):
    money["in_debt"] = money["money"] < 0
    if money["in_debt"]:
        money["ever_in_debt"] = True


def request_build(state, cost):
    """
    Pay for a build or upgrade. A free request always succeeds; otherwise
    it succeeds only when the money covers the cost.
    """
    if cost == 0:
        return True
    money = state["money"]
    if money["money"] < cost:
        return False
    money["money"] -= cost
    money["build"] += cost
    return True


def add_money(state, amount):
    state["money"]["money"] += amount
    _update_debt(state["money"])


def borrow(state, amount):
    state["money"]["money"] += amount
    state["money"]["borrowed"] = True
    _update_debt(state["money"])


def advance_money(state):
    """End-of-turn settlement: budget in, production and imports out."""
    money = state["money"]
    money["money"] += money["budget"] - money["production"] - money["imports"]
    money["build"] = 0
    _update_debt(money)


def advance_demand(state, settings):
    state["demand"]["winter"] += settings.demand_increment_winter
    state["demand"]["summer"] += settings.demand_increment_summer


def update_support(state, diff):
    state["support"] = max(0, state["support"] + diff)
