"""
Plant registry and aggregation.

The session's "plants" list is the authoritative registry. Aggregates are
computed over alive plants only; a dead plant keeps its stored values but
contributes nothing.
"""

import logging

from swissgrid.grid.types import PlantType, Season

logger = logging.getLogger(__name__)

# Plant values that scale with the multiplier level
SCALED_FIELDS = ("capacity", "production_cost", "pollution", "land_use", "biodiversity")


# ── Registry ─────────────────────────────────────────────────────────

def find_plant(state, plant_id):
    for plant in state["plants"]:
        if plant["id"] == plant_id:
            return plant
    return None


def get_plant(state, plant_id):
    plant = find_plant(state, plant_id)
    if plant is None:
        raise ValueError(f"Unknown plant: {plant_id!r}")
    return plant


def register(state, plant):
    """Add a plant. Registering an id twice is a no-op; returns False then."""
    if find_plant(state, plant["id"]) is not None:
        return False
    state["plants"].append(plant)
    return True


def unregister(state, plant_id):
    """Remove a plant and return it, or None if it was not registered."""
    plant = find_plant(state, plant_id)
    if plant is None:
        logger.warning("Tried to remove unregistered plant %s", plant_id)
        return None
    state["plants"].remove(plant)
    return plant


def alive_plants(plants):
    return [p for p in plants if p["alive"]]


# ── Aggregation ──────────────────────────────────────────────────────

def aggregate_supply(plants, season, factors=None):
    """
    Σ capacity × availability[season] over alive plants.
    factors optionally scales availability per plant type (severe weather).
    """
    season = season if isinstance(season, Season) else Season.from_string(season)
    factors = factors or {}
    total = 0.0
    for plant in alive_plants(plants):
        avl = plant["availability"][season.value] * factors.get(plant["type"], 1.0)
        total += plant["capacity"] * avl
    return total


def aggregate_production_cost(plants):
    return sum(p["production_cost"] for p in alive_plants(plants))


def aggregate_environment(plants, import_pollution=0):
    alive = alive_plants(plants)
    return {
        "land_use": sum(p["land_use"] for p in alive),
        "pollution": sum(p["pollution"] for p in alive),
        "biodiversity": sum(p["biodiversity"] for p in alive),
        "import_pollution": import_pollution,
    }


def capacity_by_type(plants):
    totals = {}
    for plant in alive_plants(plants):
        totals[plant["type"]] = totals.get(plant["type"], 0) + plant["capacity"]
    return totals


# ── Type Statistics ──────────────────────────────────────────────────

def count_by_type(plants):
    counts = {}
    for plant in plants:
        counts[plant["type"]] = counts.get(plant["type"], 0) + 1
    return counts


def increment_stat(stats, plant_type):
    stats[plant_type] = stats.get(plant_type, 0) + 1


def decrement_stat(stats, plant_type):
    if stats.get(plant_type, 0) <= 0:
        raise ValueError(f"No {plant_type} plant left to remove")
    stats[plant_type] -= 1


# ── Multipliers ──────────────────────────────────────────────────────

def scale_to_level(plant, multiplier, level):
    """Recompute every scaled value from the plant's base for the given level."""
    steps = level - 1
    base = plant["base"]
    for key in SCALED_FIELDS:
        if key == "capacity":
            plant[key] = base[key] + steps * multiplier[key]
        else:
            plant[key] = base[key] * multiplier[key] ** steps
    plant["multiplier"] = level


def max_level(multiplier, extra=0):
    return multiplier["max_elements"] + extra


def increase_multiplier(plant, multiplier, extra=0):
    """Upgrade one level. Returns False (no change) at the upper bound."""
    if plant["multiplier"] >= max_level(multiplier, extra):
        return False
    scale_to_level(plant, multiplier, plant["multiplier"] + 1)
    return True


def decrease_multiplier(plant, multiplier):
    """Downgrade one level. Returns False (no change) at level 1."""
    if plant["multiplier"] <= 1:
        return False
    scale_to_level(plant, multiplier, plant["multiplier"] - 1)
    return True


# ── Lifecycle ────────────────────────────────────────────────────────

def kill_plant(plant):
    plant["alive"] = False


def activate_plant(plant):
    if plant["retired"]:
        raise ValueError(f"Plant {plant['id']} reached its end of life")
    plant["alive"] = True


def toggle_plant(plant):
    """Switch a plant off or back on. Returns the new alive flag."""
    if plant["alive"]:
        kill_plant(plant)
    else:
        activate_plant(plant)
    return plant["alive"]


def retire_expired(plants, turn):
    """Switch off every plant whose end of life has come. Returns them."""
    retired = []
    for plant in plants:
        if plant["retired"] or plant["end_of_life_turn"] > turn:
            continue
        plant["alive"] = False
        plant["retired"] = True
        retired.append(plant)
    return retired


def reactivate_nuclear(plants, turn, span):
    """Give every nuclear plant a new life span. Returns how many were reactivated."""
    count = 0
    for plant in plants:
        if plant["type"] != PlantType.NUCLEAR.value:
            continue
        plant["retired"] = False
        plant["alive"] = True
        plant["end_of_life_turn"] = turn + span
        count += 1
    return count


# ── Remote Model ─────────────────────────────────────────────────────

def apportion_from_model(plants, models):
    """
    Copy the model's per-type availability onto each plant and split the
    model's per-type capacity equally among the alive plants of that type.
    Types missing from the model keep their local values.
    """
    winter = models[Season.WINTER.value]
    by_type = {}
    for plant in alive_plants(plants):
        by_type.setdefault(plant["type"], []).append(plant)

    for plant_type, group in by_type.items():
        for season_key, model in models.items():
            if plant_type in model["availability"]:
                for plant in group:
                    plant["availability"][season_key] = model["availability"][plant_type]
        if plant_type in winter["capacity"]:
            share = winter["capacity"][plant_type] / len(group)
            for plant in group:
                plant["capacity"] = share
