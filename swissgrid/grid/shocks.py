"""
Shock selection and resolution.

Between turns one shock is drawn without replacement from the pool and
shown with a fixed probability. A shown shock either rewards the player
(all requirements met) or asks for one of up to three reactions.

  idle → selected → reward_shown | reaction_pending → idle

The forced shock replaces the draw at its turn and is always shown.
Drawing the weather shock, and drawing whatever follows it, toggles the
severe-weather flag that scales wind and solar output. The forced shock
never touches the flag.
"""

import logging

from swissgrid.grid.types import ResourceType

logger = logging.getLogger(__name__)

IDLE = "idle"
SELECTED = "selected"
REWARD_SHOWN = "reward_shown"
REACTION_PENDING = "reaction_pending"


def new_shock_state(rules):
    return {
        "pool": rules.shock_pool(),
        "status": IDLE,
        "current": None,
        "name": None,
        "text": None,
        "shown": False,
        "path": None,
        "requirements": [],
        "reward": None,
        "reactions": [],
        "survived": 0,
        "severe_weather": False,
        "forced_done": False,
    }


# ── Selection ────────────────────────────────────────────────────────

def select_new_shock(rules, shock_state, turn, settings, rng):
    """Pick the shock for this turn. Returns True if it should be shown."""
    outgoing = shock_state["current"]

    if turn == settings.forced_shock_turn and not shock_state["forced_done"]:
        shock_id = rules.forced_shock
        shock_state["forced_done"] = True
        shown = True
    elif shock_state["pool"]:
        shock_id = rng.choice(shock_state["pool"])
        shock_state["pool"].remove(shock_id)
        shown = rng.randint(0, 99) <= settings.shock_probability
        if rules.weather_shock in (outgoing, shock_id):
            shock_state["severe_weather"] = not shock_state["severe_weather"]
    else:
        shock_id = None
        shown = False

    _load(rules, shock_state, shock_id, shown)
    logger.info("Turn %d shock: %s (shown=%s)", turn, shock_id, shown)
    return shown


def _load(rules, shock_state, shock_id, shown):
    shock_state["current"] = shock_id
    shock_state["shown"] = shown
    shock_state["status"] = SELECTED if shown else IDLE
    shock_state["path"] = None
    shock_state["reactions"] = []
    if shock_id is None:
        shock_state["name"] = shock_state["text"] = None
        shock_state["requirements"] = []
        shock_state["reward"] = None
        return
    shock = rules.shock(shock_id)
    shock_state["name"] = shock["name"]
    shock_state["text"] = shock["text"]
    shock_state["requirements"] = shock["requirements"]
    shock_state["reward"] = shock["reward"]


# ── Requirements ─────────────────────────────────────────────────────

def requirement_value(field, snapshot):
    """Energy is checked as supply − demand; the rest against their value."""
    field = ResourceType.from_string(field)
    energy = snapshot["energy"]
    if field is ResourceType.ENERGY_W:
        return energy["supply_winter"] - energy["demand_winter"]
    if field is ResourceType.ENERGY_S:
        return energy["supply_summer"] - energy["demand_summer"]
    if field is ResourceType.ENVIRONMENT:
        return snapshot["environment"]["bar"]
    if field is ResourceType.SUPPORT:
        return snapshot["support"]
    if field is ResourceType.MONEY:
        return snapshot["money"]["money"]
    raise ValueError(f"{field.value} cannot be used as a shock requirement")


def requirements_met(requirements, snapshot):
    return all(requirement_value(r["field"], snapshot) >= r["value"] for r in requirements)


def reaction_enabled(effects, snapshot):
    """A reaction that costs money or support needs at least that much."""
    for effect in effects:
        field = ResourceType.from_string(effect["field"])
        if effect["value"] >= 0:
            continue
        if field is ResourceType.MONEY and snapshot["money"]["money"] < -effect["value"]:
            return False
        if field is ResourceType.SUPPORT and snapshot["support"] < -effect["value"]:
            return False
    return True


# ── Resolution ───────────────────────────────────────────────────────

def show(rules, shock_state, snapshot):
    """
    Decide the path of the selected shock. Returns the reward effects on the
    reward path, an empty list on the reaction path.

    A shock without requirements rewards unless it offers reactions, in
    which case the choice is the point of the event.
    """
    if shock_state["status"] != SELECTED:
        raise ValueError("No shock is waiting to be shown")
    shock = rules.shock(shock_state["current"])
    if shock["requirements"]:
        passed = requirements_met(shock["requirements"], snapshot)
    else:
        passed = not shock["reactions"]

    if passed:
        shock_state["path"] = "reward"
        shock_state["status"] = REWARD_SHOWN
        shock_state["survived"] += 1
        return shock["reward"]["effects"]

    shock_state["path"] = "reaction"
    shock_state["status"] = REACTION_PENDING
    shock_state["reactions"] = [
        {"text": r["text"], "effects": r["effects"],
         "enabled": reaction_enabled(r["effects"], snapshot)}
        for r in shock["reactions"]
    ]
    return []


def can_acknowledge(shock_state):
    if shock_state["status"] == REWARD_SHOWN:
        return True
    return (shock_state["status"] == REACTION_PENDING
            and not any(r["enabled"] for r in shock_state["reactions"]))


def select_reaction(shock_state, index):
    """Choose a reaction. Returns its effects and resolves the shock."""
    if shock_state["status"] != REACTION_PENDING:
        raise ValueError("No shock reaction is pending")
    reactions = shock_state["reactions"]
    if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(reactions):
        raise ValueError(f"Invalid reaction index: {index!r}")
    if not reactions[index]["enabled"]:
        raise ValueError(f"Reaction {index} is not available")
    effects = reactions[index]["effects"]
    resolve(shock_state)
    return effects


def acknowledge(shock_state):
    if not can_acknowledge(shock_state):
        raise ValueError("Shock cannot be dismissed yet")
    resolve(shock_state)


def resolve(shock_state):
    """Back to idle. The current id is kept for the next weather toggle."""
    shock_state["status"] = IDLE
    shock_state["shown"] = False
    shock_state["reactions"] = []
