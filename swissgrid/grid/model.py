"""
Local copy of the remote predictive model.

One SeasonalModel per season holds the per-type availability and capacity
and the base demand the remote model predicts for the peak week of that
season. Local player actions are queued as pending edits until they have
been sent and the model re-fetched.

Coherency (MSI-style):
  new / reset      → INVALID
  fetch succeeded  → SHARED
  local edit       → pending grows, state unchanged
"""

import logging

from swissgrid.grid.types import CoherencyState, ModelColumn, PlantType, Season

logger = logging.getLogger(__name__)

# Row keys that are not model columns
_ROW_METADATA = ("season", "week", "id", "res_id")


# ── Seasonal Models ──────────────────────────────────────────────────

def new_model(season):
    season = season if isinstance(season, Season) else Season.from_string(season)
    return {
        "season": season.value,
        "availability": {},
        "capacity": {},
        "demand": 0.0,
        "state": CoherencyState.INVALID.value,
        "pending": [],
    }


def new_models():
    return {s.value: new_model(s) for s in Season}


def reset_models(state):
    state["models"] = new_models()


def is_valid(model):
    return model["state"] != CoherencyState.INVALID.value


def models_valid(state):
    return all(is_valid(m) for m in state["models"].values())


def record_edit(model, column, plant_type, value):
    """Queue a local edit. The coherency state is left alone."""
    column = column if isinstance(column, ModelColumn) else ModelColumn.from_string(column)
    plant_type = plant_type if isinstance(plant_type, PlantType) or plant_type is None \
        else PlantType.from_string(plant_type)
    model["pending"].append({
        "column": column.value,
        "plant_type": plant_type.value if plant_type is not None else None,
        "value": float(value),
    })


def record_plant_edit(state, column, plant_type, value):
    """
    Queue an edit in both seasonal models.
    Returns False for types the remote model does not track (trees).
    """
    plant_type = plant_type if isinstance(plant_type, PlantType) else PlantType.from_string(plant_type)
    if plant_type.model_suffix is None:
        return False
    for model in state["models"].values():
        record_edit(model, column, plant_type, value)
    return True


def update_from_server(model, availability, capacity, demand):
    model["availability"] = dict(availability)
    model["capacity"] = dict(capacity)
    model["demand"] = float(demand)
    model["state"] = CoherencyState.SHARED.value


def clear_sent(model, sent):
    """Drop the edits that were sent; edits queued meanwhile survive."""
    remaining = list(model["pending"])
    for edit in sent:
        if edit in remaining:
            remaining.remove(edit)
    model["pending"] = remaining


def outgoing_edits(state):
    """
    Edits to push to the remote model, collapsed to the latest value per
    column. Both seasons share the same edits, so winter's queue is used.
    Returns (snapshot_of_queue, upserts).
    """
    queued = list(state["models"][Season.WINTER.value]["pending"])
    latest = {}
    for edit in queued:
        latest[(edit["column"], edit["plant_type"])] = edit["value"]
    upserts = [
        (ModelColumn(column),
         PlantType(plant_type) if plant_type is not None else None,
         value)
        for (column, plant_type), value in latest.items()
    ]
    return queued, upserts


def acknowledge_sync(state, sent):
    """Clear the sent edits from both seasons after a send+fetch cycle."""
    for model in state["models"].values():
        clear_sent(model, sent)


# ── Fetch Handling ───────────────────────────────────────────────────

def peak_weeks(turn, years_per_turn=3, weeks_per_year=52):
    """Week indices of the winter and summer peaks for a turn."""
    winter = turn * years_per_turn * weeks_per_year
    return winter, winter + weeks_per_year // 2


def _number(name, value):
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Model column {name} is not numeric: {value!r}")


def parse_row(row):
    """Split a model row into (availability, capacity, demand) keyed by plant type."""
    availability = {}
    capacity = {}
    demand = 0.0
    for name, value in row.items():
        if name in _ROW_METADATA:
            continue
        try:
            column, plant_type = ModelColumn.from_wire_name(name)
        except ValueError:
            logger.debug("Ignoring unknown model column %r", name)
            continue
        if column is ModelColumn.DEM:
            demand = _number(name, value)
        elif column is ModelColumn.AVL:
            availability[plant_type.value] = _number(name, value)
        else:
            capacity[plant_type.value] = _number(name, value)
    return availability, capacity, demand


def row_season(row):
    if not isinstance(row, dict):
        raise ValueError(f"Model row is not an object: {row!r}")
    if "season" not in row:
        raise ValueError("Model row has no season discriminator")
    return Season.WINTER if _number("season", row["season"]) < 0.5 else Season.SUMMER


def apply_fetch(state, rows):
    """
    Overwrite the seasonal models from fetched rows. Returns the seasons updated.
    Every row is parsed first, so a malformed one leaves both models untouched.
    """
    parsed = [(row_season(row), parse_row(row)) for row in rows]
    for season, (availability, capacity, demand) in parsed:
        update_from_server(state["models"][season.value], availability, capacity, demand)
    updated = [season.value for season, _ in parsed]
    logger.debug("Model fetch updated %s", ", ".join(updated) or "nothing")
    return updated


# ── Derived Values ───────────────────────────────────────────────────

def model_supply(model, factors=None):
    """Σ capacity × availability per type, optionally scaled per type."""
    factors = factors or {}
    total = 0.0
    for plant_type, cap in model["capacity"].items():
        avl = model["availability"].get(plant_type, 0.0)
        total += cap * avl * factors.get(plant_type, 1.0)
    return total
