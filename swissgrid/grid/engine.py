"""
SwissGrid game engine.

Implements the GameEngine interface as a pure state machine.
All state is a plain dict. No networking: the server drives the remote
model and hands fetched rows back through apply_model_fetch.

Phase machine:
  not_started --start--> build --next_turn--> [shock] --> build ... --> ended

A shown shock holds the turn in the "shock" phase until the player picks a
reaction or dismisses the reward.
"""

import logging
import random
from copy import deepcopy

from swissgrid.game_engine import GameEngine, ActionResult
from swissgrid.grid import model as grid_model
from swissgrid.grid import plants as registry
from swissgrid.grid import policies, resources, shocks
from swissgrid.grid.rules import RuleBook
from swissgrid.grid.scoring import compute_final_score
from swissgrid.grid.state import create_initial_state, create_plant
from swissgrid.grid.types import (
    GameStatus, ModelColumn, PlantType, ResourceType, SlotStatus,
)
from swissgrid.settings import GameSettings

logger = logging.getLogger(__name__)

# Plant types whose max level and build time policies can change
_OVERLOAD_TYPES = (PlantType.WIND.value, PlantType.SOLAR.value)


class GridEngine(GameEngine):

    player_count_range = (1, 1)

    def __init__(self, rules=None, settings=None, rng=None):
        self.rules = rules or RuleBook.default()
        self.settings = settings or GameSettings()
        self.rng = rng or random.Random()

    # ── Setup ─────────────────────────────────────────────────────────

    def initial_state(self, player_ids, player_names):
        if len(player_ids) != 1:
            raise ValueError("SwissGrid is a single-player game")
        state = create_initial_state(player_ids, player_names, self.rules, self.settings)
        resources.compute_snapshot(state, self.settings)
        return state

    def reset(self, state):
        """Back to NOT_STARTED, refilling the same dict."""
        player_ids = state["player_ids"]
        player_names = [p["name"] for p in state["players"]]
        fresh = self.initial_state(player_ids, player_names)
        state.clear()
        state.update(fresh)
        return state

    # ── Views ─────────────────────────────────────────────────────────

    def get_player_view(self, state, player_id):
        """Return state without the shock pool contents and model internals."""
        self._check_player(state, player_id)
        view = deepcopy(state)
        view["shock"]["pool"] = len(view["shock"]["pool"])
        view["models"] = {
            season: {"state": m["state"], "pending": len(m["pending"]), "demand": m["demand"]}
            for season, m in view["models"].items()
        }
        view.pop("log", None)
        return view

    def get_valid_actions(self, state, player_id):
        self._check_player(state, player_id)
        status = state["status"]
        if status == GameStatus.ENDED.value:
            return [{"kind": "reset"}]
        if status == GameStatus.NOT_STARTED.value:
            return [{"kind": "start"}]

        if state["phase"] == "shock":
            actions = self._valid_shock_actions(state)
        else:
            actions = self._valid_build_actions(state)
        actions.append({"kind": "reset"})
        return actions

    def get_waiting_for(self, state):
        if state["status"] == GameStatus.ENDED.value:
            return []
        return list(state["player_ids"])

    def get_phase_info(self, state):
        status = state["status"]
        if status == GameStatus.NOT_STARTED.value:
            phase, description = "not_started", "Start the game"
        elif status == GameStatus.ENDED.value:
            phase, description = "ended", "Game over"
        elif state["phase"] == "shock":
            phase = "shock"
            shock = state["shock"]
            if shock["status"] == shocks.REACTION_PENDING:
                description = f"{shock['name']}: choose a reaction"
            else:
                description = f"{shock['name']}: survived"
        else:
            phase, description = "build", "Build, vote or end the turn"

        return {
            "phase": phase,
            "turn": state["turn"],
            "remaining_turns": state["remaining_turns"],
            "description": description,
        }

    # ── Action Dispatch ───────────────────────────────────────────────

    def apply_action(self, state, player_id, action):
        self._check_player(state, player_id)
        kind = action.get("kind")
        status = state["status"]

        if kind == "reset":
            state = self.reset(deepcopy(state))
            return ActionResult(new_state=state, log=["Game reset"])
        if status == GameStatus.ENDED.value:
            raise ValueError("Game is over")

        state = deepcopy(state)
        log = []
        success = True

        # ── Before Start ──────────────────────────────────────────
        if status == GameStatus.NOT_STARTED.value:
            if kind == "start":
                log = self._do_start(state)
            else:
                raise ValueError(f"Invalid action kind before start: {kind}")

        # ── Shock Phase ───────────────────────────────────────────
        elif state["phase"] == "shock":
            if kind == "select_reaction":
                log = self._do_select_reaction(state, action)
            elif kind == "acknowledge_shock":
                log = self._do_acknowledge_shock(state)
            else:
                raise ValueError(f"Invalid action kind for shock: {kind}")

        # ── Build Phase ───────────────────────────────────────────
        else:
            if kind == "build":
                log, success = self._do_build(state, action)
            elif kind == "upgrade":
                log, success = self._do_upgrade(state, action)
            elif kind == "downgrade":
                log, success = self._do_downgrade(state, action)
            elif kind == "delete":
                log = self._do_delete(state, action)
            elif kind == "toggle_plant":
                log = self._do_toggle_plant(state, action)
            elif kind == "set_imports":
                log = self._do_set_imports(state, action)
            elif kind == "borrow":
                log = self._do_borrow(state)
            elif kind == "vote_policy":
                log, success = self._do_vote_policy(state, action)
            elif kind == "start_campaign":
                log, success = self._do_start_campaign(state, action)
            elif kind == "next_turn":
                log = self._do_next_turn(state)
            else:
                raise ValueError(f"Invalid action kind for build: {kind}")

        if state["status"] != GameStatus.ENDED.value:
            resources.compute_snapshot(state, self.settings)
        state["log"].extend(log)
        game_over = state["status"] == GameStatus.ENDED.value
        return ActionResult(new_state=state, log=log, success=success, game_over=game_over)

    # ── Valid Action Generators ───────────────────────────────────────

    def _valid_build_actions(self, state):
        actions = [{"kind": "next_turn"}, {"kind": "set_imports"}]
        if not state["money"]["borrowed"]:
            actions.append({"kind": "borrow"})

        for slot in state["slots"]:
            if slot["status"] != SlotStatus.IDLE.value:
                continue
            for plant_type in slot["allowed"]:
                actions.append({"kind": "build", "slot": slot["index"], "plant_type": plant_type})

        for plant in state["plants"]:
            multiplier = self.rules.multiplier(plant["type"])
            limit = registry.max_level(multiplier, self._overload(state, plant["type"], "max_multiplier"))
            if plant["multiplier"] < limit:
                actions.append({"kind": "upgrade", "plant_id": plant["id"]})
            if plant["multiplier"] > 1:
                actions.append({"kind": "downgrade", "plant_id": plant["id"]})
            if not plant["retired"]:
                actions.append({"kind": "toggle_plant", "plant_id": plant["id"]})
            actions.append({"kind": "delete", "plant_id": plant["id"]})

        for slot in state["slots"]:
            if slot["status"] == SlotStatus.BUILDING.value:
                actions.append({"kind": "delete", "plant_id": slot["plant_id"]})

        for policy_id in self.rules.policy_ids():
            if policy_id not in state["policies"]["voted"]:
                actions.append({"kind": "vote_policy", "policy_id": policy_id})
        for campaign_id in self.rules.campaign_ids():
            actions.append({"kind": "start_campaign", "campaign_id": campaign_id})
        return actions

    def _valid_shock_actions(self, state):
        shock = state["shock"]
        actions = []
        if shock["status"] == shocks.REACTION_PENDING:
            for i, reaction in enumerate(shock["reactions"]):
                if reaction["enabled"]:
                    actions.append({"kind": "select_reaction", "index": i})
        if shocks.can_acknowledge(shock):
            actions.append({"kind": "acknowledge_shock"})
        return actions

    # ── Start ─────────────────────────────────────────────────────────

    def _do_start(self, state):
        state["status"] = GameStatus.PLAYING.value
        state["phase"] = "build"
        state["plant_stats"] = registry.count_by_type(state["plants"])
        state["demand"] = {"winter": self.settings.demand_initial_winter,
                           "summer": self.settings.demand_initial_summer}
        for plant_type in registry.capacity_by_type(state["plants"]):
            self._record_capacity(state, plant_type)
        return ["Game started"]

    # ── Plants ────────────────────────────────────────────────────────

    def _do_build(self, state, action):
        slot = self._get_slot(state, action.get("slot"))
        if slot["status"] != SlotStatus.IDLE.value:
            raise ValueError(f"Slot {slot['index']} is not free")
        plant_type = PlantType.from_string(action.get("plant_type"))
        if plant_type.value not in slot["allowed"]:
            raise ValueError(f"Cannot build {plant_type.value} on slot {slot['index']}")

        config = self.rules.plant_config(plant_type)
        if not self.request_build(state, config["build_cost"]):
            return [f"Not enough money to build a {config['name']}"], False

        build_time = config["build_time"] + self._overload(state, plant_type.value, "build_time")
        plant = create_plant(self._next_plant_id(state), plant_type, config, state["turn"],
                             self.settings, slot=slot["index"], build_time=build_time)
        slot["plant_id"] = plant["id"]
        if plant["build_time"] == 0:
            self._complete_build(state, slot, plant)
            return [f"Built {config['name']} on slot {slot['index']}"], True

        slot["status"] = SlotStatus.BUILDING.value
        slot["pending"] = plant
        return [f"Construction of {config['name']} started ({plant['build_time']} turns)"], True

    def _complete_build(self, state, slot, plant):
        plant["build_time"] = 0
        registry.register(state, plant)
        registry.increment_stat(state["plant_stats"], plant["type"])
        slot["status"] = SlotStatus.DONE.value
        slot["pending"] = None
        self._record_capacity(state, plant["type"])

    def _do_upgrade(self, state, action):
        plant = registry.get_plant(state, action.get("plant_id"))
        multiplier = self.rules.multiplier(plant["type"])
        extra = self._overload(state, plant["type"], "max_multiplier")
        if plant["multiplier"] >= registry.max_level(multiplier, extra):
            return [f"{plant['name']} is already at its maximum size"], False
        if not self.request_build(state, multiplier["cost"]):
            return [f"Not enough money to upgrade {plant['name']}"], False
        registry.increase_multiplier(plant, multiplier, extra)
        self._record_capacity(state, plant["type"])
        return [f"Upgraded {plant['name']} to level {plant['multiplier']}"], True

    def _do_downgrade(self, state, action):
        plant = registry.get_plant(state, action.get("plant_id"))
        if not registry.decrease_multiplier(plant, self.rules.multiplier(plant["type"])):
            return [f"{plant['name']} is already at its minimum size"], False
        self._record_capacity(state, plant["type"])
        return [f"Downgraded {plant['name']} to level {plant['multiplier']}"], True

    def _do_delete(self, state, action):
        plant_id = action.get("plant_id")
        for slot in state["slots"]:
            if slot["status"] == SlotStatus.BUILDING.value and slot["plant_id"] == plant_id:
                name = slot["pending"]["name"]
                self._free_slot(slot)
                return [f"Construction of {name} cancelled"]

        plant = registry.get_plant(state, plant_id)
        registry.decrement_stat(state["plant_stats"], plant["type"])
        registry.unregister(state, plant_id)
        if plant["slot"] is not None:
            self._free_slot(state["slots"][plant["slot"]])
        self._record_capacity(state, plant["type"])
        return [f"Removed {plant['name']}"]

    def _do_toggle_plant(self, state, action):
        plant = registry.get_plant(state, action.get("plant_id"))
        alive = registry.toggle_plant(plant)
        self._record_capacity(state, plant["type"])
        return [f"{plant['name']} switched {'on' if alive else 'off'}"]

    # ── Money / Imports ───────────────────────────────────────────────

    def request_build(self, state, cost):
        """Deduct cost if affordable. Never raises; a free build always succeeds."""
        return resources.request_build(state, cost)

    def _do_set_imports(self, state, action):
        imports = state["imports"]
        if "percentage" in action:
            pct = action["percentage"]
            if not isinstance(pct, (int, float)) or isinstance(pct, bool) or not 0 <= pct <= 100:
                raise ValueError(f"Import percentage must be between 0 and 100, got {pct!r}")
            imports["percentage"] = pct
        for flag in ("green", "summer"):
            if flag in action:
                if not isinstance(action[flag], bool):
                    raise ValueError(f"Import flag {flag} must be true or false")
                imports[flag] = action[flag]
        return [f"Imports set to {imports['percentage']}%"
                f"{' green' if imports['green'] else ''}"
                f"{' incl. summer' if imports['summer'] else ''}"]

    def _do_borrow(self, state):
        if state["money"]["borrowed"]:
            raise ValueError("A loan was already taken")
        resources.borrow(state, self.settings.loan_amount)
        return [f"Borrowed {self.settings.loan_amount}"]

    # ── Policies ──────────────────────────────────────────────────────

    def _do_vote_policy(self, state, action):
        policy_id = action.get("policy_id")
        snapshot = resources.compute_snapshot(state, self.settings)
        passed, effects, probability = policies.request_policy(
            self.rules, state["policies"], policy_id, snapshot, self.rng)
        name = self.rules.policy(policy_id)["name"]
        if probability is None:
            return [f"{name} cannot be put to a vote"], False
        if not passed:
            return [f"{name} was rejected ({probability:.0%} chance)"], True
        for effect in effects:
            self.apply_effect(state, effect)
        return [f"{name} was accepted ({probability:.0%} chance)"], True

    def _do_start_campaign(self, state, action):
        campaign = self.rules.campaign(action.get("campaign_id"))
        if not self.request_build(state, campaign.get("cost", 0)):
            return [f"Not enough money for the {campaign['name']}"], False
        policies.schedule_campaign(self.rules, state["policies"], action["campaign_id"])
        return [f"{campaign['name']} launched for {campaign['length']} turns"], True

    # ── Effects ───────────────────────────────────────────────────────

    def apply_effect(self, state, effect):
        """Route one rule effect to the resource it changes."""
        field = ResourceType.from_string(effect["field"])
        value = effect["value"]
        if field is ResourceType.ENERGY_W:
            state["demand"]["winter"] = max(0.0, state["demand"]["winter"] + value)
        elif field is ResourceType.ENERGY_S:
            state["demand"]["summer"] = max(0.0, state["demand"]["summer"] + value)
        elif field is ResourceType.ENVIRONMENT:
            state["environment_shock"] += value
        elif field is ResourceType.SUPPORT:
            resources.update_support(state, value)
        elif field is ResourceType.MONEY:
            resources.add_money(state, value)
        elif field is ResourceType.MULT_WIND:
            state["overloads"]["wind"]["max_multiplier"] += int(value)
        elif field is ResourceType.MULT_SOLAR:
            state["overloads"]["solar"]["max_multiplier"] += int(value)
        elif field is ResourceType.BUILD_TIME_WIND:
            state["overloads"]["wind"]["build_time"] += int(value)
        elif field is ResourceType.BUILD_TIME_SOLAR:
            state["overloads"]["solar"]["build_time"] += int(value)

    # ── Turn / Shocks ─────────────────────────────────────────────────

    def _do_next_turn(self, state):
        log = []
        state["environment_shock"] = 0.0
        shock = state["shock"]
        shown = shocks.select_new_shock(self.rules, shock, state["turn"], self.settings, self.rng)
        if shown:
            snapshot = resources.compute_snapshot(state, self.settings)
            for effect in shocks.show(self.rules, shock, snapshot):
                self.apply_effect(state, effect)
            state["phase"] = "shock"
            log.append(f"Shock: {shock['name']}")
            if shock["path"] == "reward":
                log.append(shock["reward"]["text"] or f"{shock['name']} survived")
            return log

        log.extend(self._advance_turn(state))
        return log

    def _do_select_reaction(self, state, action):
        shock = state["shock"]
        index = action.get("index")
        forced = shock["current"] == self.rules.forced_shock
        text = None
        if isinstance(index, int) and 0 <= index < len(shock["reactions"]):
            text = shock["reactions"][index]["text"]
        effects = shocks.select_reaction(shock, index)
        for effect in effects:
            self.apply_effect(state, effect)
        log = [f"Reaction: {text}"]
        if forced and index == 0:
            n = registry.reactivate_nuclear(state["plants"], state["turn"],
                                            self.settings.nuclear_life_span)
            if n:
                self._record_capacity(state, PlantType.NUCLEAR.value)
            log.append(f"{n} nuclear plant(s) reactivated")
        state["phase"] = "build"
        log.extend(self._advance_turn(state))
        return log

    def _do_acknowledge_shock(self, state):
        shocks.acknowledge(state["shock"])
        state["phase"] = "build"
        return self._advance_turn(state)

    def _advance_turn(self, state):
        log = []
        if state["remaining_turns"] <= 1:
            snapshot = resources.compute_snapshot(state, self.settings)
            state["status"] = GameStatus.ENDED.value
            state["score"] = compute_final_score(state, snapshot)
            log.append("Game over")
            return log

        # Settle the turn that just ended
        resources.compute_snapshot(state, self.settings)
        resources.advance_money(state)

        state["remaining_turns"] -= 1
        state["turn"] += 1

        for slot in state["slots"]:
            if slot["status"] != SlotStatus.BUILDING.value:
                continue
            slot["pending"]["build_time"] -= 1
            if slot["pending"]["build_time"] <= 0:
                plant = slot["pending"]
                self._complete_build(state, slot, plant)
                log.append(f"{plant['name']} finished on slot {slot['index']}")

        for plant in registry.retire_expired(state["plants"], state["turn"]):
            self._record_capacity(state, plant["type"])
            log.append(f"{plant['name']} reached its end of life")

        resources.advance_demand(state, self.settings)
        for tag, magnitude, _ in policies.advance_turn(state["policies"]):
            log.append(f"Campaign finished: {tag} bonus +{magnitude}")

        log.append(f"Turn {state['turn']} begins")
        return log

    # ── Remote Model ──────────────────────────────────────────────────

    def apply_model_fetch(self, state, rows, sent=(), apportion=False):
        """
        Store fetched model rows in the state (in place) and clear the edits
        that were sent before the fetch. With apportion, plants take their
        availability and capacity from the model.
        """
        grid_model.apply_fetch(state, rows)
        grid_model.acknowledge_sync(state, sent)
        if apportion:
            self.apply_model_availability(state)
        return resources.compute_snapshot(state, self.settings)

    def apply_model_availability(self, state):
        registry.apportion_from_model(state["plants"], state["models"])
        return resources.compute_snapshot(state, self.settings)

    def invalidate_models(self, state):
        grid_model.reset_models(state)
        return resources.compute_snapshot(state, self.settings)

    # ── Helpers ───────────────────────────────────────────────────────

    def _check_player(self, state, player_id):
        if player_id not in state["player_ids"]:
            raise ValueError(f"Unknown player: {player_id}")

    def _get_slot(self, state, index):
        if not isinstance(index, int) or isinstance(index, bool) \
                or not 0 <= index < len(state["slots"]):
            raise ValueError(f"Invalid slot index: {index!r}")
        return state["slots"][index]

    def _free_slot(self, slot):
        slot["status"] = SlotStatus.IDLE.value
        slot["plant_id"] = None
        slot["pending"] = None

    def _next_plant_id(self, state):
        plant_id = f"p{state['next_plant_id']}"
        state["next_plant_id"] += 1
        return plant_id

    def _overload(self, state, plant_type, key):
        if plant_type not in _OVERLOAD_TYPES:
            return 0
        return state["overloads"][plant_type][key]

    def _record_capacity(self, state, plant_type):
        """Queue the type's new total capacity for the remote model."""
        if state["offline"]:
            return
        total = registry.capacity_by_type(state["plants"]).get(plant_type, 0)
        grid_model.record_plant_edit(state, ModelColumn.CAP, plant_type, total)
