"""
State helpers for SwissGrid.

Plant and build-slot creation and the full initial game state. The state is
one plain dict; everything in it is JSON-serializable.
"""

from swissgrid.grid.model import new_models
from swissgrid.grid.plants import SCALED_FIELDS
from swissgrid.grid.policies import new_policy_state
from swissgrid.grid.shocks import new_shock_state
from swissgrid.grid.types import GameStatus, PlantType, SlotStatus


# ── Plants ───────────────────────────────────────────────────────────

def life_span(plant_type, settings):
    """Nuclear plants run for the short span, everything else for the default one."""
    if PlantType.from_string(plant_type) is PlantType.NUCLEAR:
        return settings.nuclear_life_span
    return settings.default_life_span


def create_plant(plant_id, plant_type, config, turn, settings, slot=None, build_time=None):
    """Create a level-1 plant from its config."""
    plant_type = PlantType.from_string(plant_type)
    base = {k: config[k] for k in SCALED_FIELDS}
    plant = {
        "id": plant_id,
        "type": plant_type.value,
        "name": config.get("name", plant_type.value),
        "slot": slot,
        "alive": True,
        "retired": False,
        "preview": False,
        "build_time": config["build_time"] if build_time is None else max(0, build_time),
        "build_cost": config["build_cost"],
        "availability": dict(config["availability"]),
        "multiplier": 1,
        "end_of_life_turn": turn + life_span(plant_type.value, settings),
        "base": base,
    }
    plant.update(base)
    return plant


# ── Build Slots ──────────────────────────────────────────────────────

def create_slot(index, allowed):
    return {
        "index": index,
        "allowed": list(allowed),
        "status": SlotStatus.IDLE.value,
        "plant_id": None,
        "pending": None,
    }


def create_slots(rules):
    slots = []
    for i in range(rules.num_slots):
        allowed = list(rules.slot_types)
        if i in rules.hydro_slots:
            allowed.append(PlantType.HYDRO.value)
        slots.append(create_slot(i, allowed))
    return slots


# ── Session ──────────────────────────────────────────────────────────

def create_money(settings):
    return {
        "money": settings.start_money,
        "budget": settings.budget_per_turn,
        "production": 0,
        "build": 0,
        "imports": 0,
        "in_debt": False,
        "ever_in_debt": False,
        "borrowed": False,
    }


def create_initial_state(player_ids, player_names, rules, settings):
    """Build the full initial state of a session, before the game starts."""
    players = [{"player_id": pid, "name": name}
               for pid, name in zip(player_ids, player_names)]

    plants = []
    for i, plant_type in enumerate(rules.starting_plants):
        plant = create_plant(f"p{i}", plant_type, rules.plant_config(plant_type), 0, settings,
                             build_time=0)
        plants.append(plant)

    return {
        "game": "swissgrid",
        "player_ids": list(player_ids),
        "players": players,
        "status": GameStatus.NOT_STARTED.value,
        "phase": "build",
        "turn": 0,
        "total_turns": settings.n_turns,
        "remaining_turns": settings.n_turns,
        "offline": settings.offline,
        "money": create_money(settings),
        "support": settings.support_default,
        "demand": {"winter": settings.demand_initial_winter,
                   "summer": settings.demand_initial_summer},
        "imports": {"percentage": 0, "green": False, "summer": False},
        "overloads": {
            "wind": {"max_multiplier": 0, "build_time": 0},
            "solar": {"max_multiplier": 0, "build_time": 0},
        },
        "environment_shock": 0.0,
        "plants": plants,
        "next_plant_id": len(plants),
        "slots": create_slots(rules),
        "plant_stats": {},
        "policies": new_policy_state(),
        "shock": new_shock_state(rules),
        "models": new_models(),
        "resources": None,
        "score": None,
        "log": [],
    }
