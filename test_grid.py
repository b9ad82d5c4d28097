"""
Tests for the SwissGrid engine.

Covers: plant aggregation and multipliers, resource snapshot, policy votes
and campaigns, shock selection, model coherency, turn flow, scoring and
configuration loading.
"""

import json
import random

import pytest

from swissgrid.grid import catalog, resources
from swissgrid.grid import model as grid_model
from swissgrid.grid import plants as registry
from swissgrid.grid import policies, shocks
from swissgrid.grid.engine import GridEngine
from swissgrid.grid.rules import RuleBook, RuleLookupError
from swissgrid.grid.scoring import compute_final_score, import_percentage
from swissgrid.grid.state import create_plant
from swissgrid.grid.types import (
    CoherencyState, ModelColumn, PlantType, ResourceType, Season,
)
from swissgrid.settings import GameSettings


# ── Helpers ───────────────────────────────────────────────────────────

class ScriptedRng:
    """Deterministic stand-in for random.Random.

    randint pops the next scripted draw (or returns the low bound);
    choice pops the next scripted pick (or returns the first element).
    """

    def __init__(self, draws=(), picks=()):
        self.draws = list(draws)
        self.picks = list(picks)

    def randint(self, a, b):
        return self.draws.pop(0) if self.draws else a

    def choice(self, seq):
        if self.picks:
            pick = self.picks.pop(0)
            assert pick in seq
            return pick
        return seq[0]


def make_plant(capacity, winter, summer=0.0, alive=True, plant_type="gas", **extra):
    plant = {
        "id": f"{plant_type}-{capacity}",
        "type": plant_type,
        "alive": alive,
        "retired": False,
        "capacity": capacity,
        "availability": {"winter": winter, "summer": summer},
        "production_cost": 0,
        "pollution": 0,
        "land_use": 0,
        "biodiversity": 0,
    }
    plant.update(extra)
    return plant


def make_engine(draws=(), picks=(), **overrides):
    return GridEngine(settings=GameSettings(**overrides), rng=ScriptedRng(draws, picks))


def make_started(engine):
    state = engine.initial_state(["p1"], ["Alice"])
    return engine.apply_action(state, "p1", {"kind": "start"}).new_state


def make_snapshot(supply_w=150, demand_w=120, supply_s=100, demand_s=90,
                  bar=0.6, support=60, money=1000):
    return {
        "energy": {"supply_winter": supply_w, "demand_winter": demand_w,
                   "supply_summer": supply_s, "demand_summer": demand_s},
        "environment": {"bar": bar},
        "support": support,
        "money": {"money": money},
    }


def act(engine, state, kind, **params):
    action = {"kind": kind}
    action.update(params)
    return engine.apply_action(state, "p1", action)


# ══════════════════════════════════════════════════════════════════════
# Plant Aggregation Tests
# ══════════════════════════════════════════════════════════════════════

class TestAggregation:

    def test_two_plants_below_bar_max(self):
        """100 @ 1.0 and 50 @ 0.5 in winter: supply 125, surplus -75."""
        engine = make_engine()
        state = engine.initial_state(["p1"], ["Alice"])
        state["plants"] = [make_plant(100, 1.0), make_plant(50, 0.5)]

        energy = resources.compute_energy(state, engine.settings)
        assert energy["supply_winter"] == pytest.approx(125)
        assert energy["surplus_winter"] == pytest.approx(-75)
        assert energy["imported_winter"] == 0

    def test_supply_is_additive(self):
        a = [make_plant(100, 1.0), make_plant(20, 0.25)]
        b = [make_plant(40, 0.5, 0.9)]
        for season in Season:
            total = registry.aggregate_supply(a + b, season)
            assert total == pytest.approx(
                registry.aggregate_supply(a, season) + registry.aggregate_supply(b, season))

    def test_dead_plant_contributes_nothing(self):
        dead = make_plant(100, 1.0, alive=False, production_cost=50, pollution=30,
                          land_use=0.1, biodiversity=0.1)
        assert registry.aggregate_supply([dead], Season.WINTER) == 0
        assert registry.aggregate_production_cost([dead]) == 0
        env = registry.aggregate_environment([dead])
        assert env["pollution"] == 0
        assert env["land_use"] == 0

    def test_environment_sums_and_import_pollution(self):
        plants = [make_plant(10, 1.0, pollution=5, land_use=0.1, biodiversity=0.02),
                  make_plant(10, 1.0, pollution=-2, land_use=0.05, biodiversity=-0.01)]
        env = registry.aggregate_environment(plants, import_pollution=7)
        assert env["pollution"] == 3
        assert env["land_use"] == pytest.approx(0.15)
        assert env["biodiversity"] == pytest.approx(0.01)
        assert env["import_pollution"] == 7

    def test_weather_factor_scales_by_type(self):
        plants = [make_plant(100, 1.0, plant_type="wind"), make_plant(100, 1.0, plant_type="gas")]
        total = registry.aggregate_supply(plants, "winter", {"wind": 0.5})
        assert total == pytest.approx(150)

    def test_register_twice_is_noop(self):
        engine = make_engine()
        state = engine.initial_state(["p1"], ["Alice"])
        plant = state["plants"][0]
        assert registry.register(state, plant) is False
        assert len(state["plants"]) == 3

    def test_unregister_missing_is_noop(self):
        engine = make_engine()
        state = engine.initial_state(["p1"], ["Alice"])
        assert registry.unregister(state, "nope") is None
        assert len(state["plants"]) == 3


# ══════════════════════════════════════════════════════════════════════
# Multiplier Tests
# ══════════════════════════════════════════════════════════════════════

class TestMultipliers:

    def setup_method(self):
        self.rules = RuleBook.default()
        self.settings = GameSettings()

    def make(self, plant_type):
        config = self.rules.plant_config(plant_type)
        return create_plant("x", plant_type, config, 0, self.settings)

    def test_upgrade_scales_values(self):
        plant = self.make("gas")
        assert registry.increase_multiplier(plant, self.rules.multiplier("gas"))
        assert plant["multiplier"] == 2
        assert plant["capacity"] == 60
        assert plant["production_cost"] == pytest.approx(48)
        assert plant["pollution"] == pytest.approx(45)

    def test_round_trip_is_exact(self):
        plant = self.make("solar")
        before = {k: plant[k] for k in registry.SCALED_FIELDS}
        multiplier = self.rules.multiplier("solar")
        registry.increase_multiplier(plant, multiplier)
        registry.increase_multiplier(plant, multiplier)
        registry.decrease_multiplier(plant, multiplier)
        registry.decrease_multiplier(plant, multiplier)
        assert {k: plant[k] for k in registry.SCALED_FIELDS} == before
        assert plant["multiplier"] == 1

    def test_upper_bound(self):
        plant = self.make("gas")
        multiplier = self.rules.multiplier("gas")
        assert registry.increase_multiplier(plant, multiplier)
        assert registry.increase_multiplier(plant, multiplier)
        capacity = plant["capacity"]
        assert registry.increase_multiplier(plant, multiplier) is False
        assert plant["multiplier"] == 3
        assert plant["capacity"] == capacity

    def test_lower_bound(self):
        plant = self.make("gas")
        assert registry.decrease_multiplier(plant, self.rules.multiplier("gas")) is False
        assert plant["multiplier"] == 1

    def test_overload_raises_upper_bound(self):
        plant = self.make("wind")
        multiplier = self.rules.multiplier("wind")
        for _ in range(3):
            registry.increase_multiplier(plant, multiplier, extra=1)
        assert plant["multiplier"] == 4
        assert registry.increase_multiplier(plant, multiplier, extra=1) is False


# ══════════════════════════════════════════════════════════════════════
# Type Statistics / Lifecycle Tests
# ══════════════════════════════════════════════════════════════════════

class TestLifecycle:

    def test_count_by_type(self):
        plants = [make_plant(1, 1.0), make_plant(2, 1.0), make_plant(3, 1.0, plant_type="wind")]
        assert registry.count_by_type(plants) == {"gas": 2, "wind": 1}

    def test_decrement_below_zero_raises(self):
        stats = {"gas": 0}
        with pytest.raises(ValueError, match="No gas plant"):
            registry.decrement_stat(stats, "gas")
        assert stats == {"gas": 0}

    def test_retire_expired(self):
        plant = make_plant(10, 1.0, end_of_life_turn=3)
        assert registry.retire_expired([plant], 2) == []
        assert registry.retire_expired([plant], 3) == [plant]
        assert plant["alive"] is False
        assert plant["retired"] is True

    def test_retired_plant_cannot_be_switched_on(self):
        plant = make_plant(10, 1.0, alive=False, retired=True)
        with pytest.raises(ValueError, match="end of life"):
            registry.toggle_plant(plant)

    def test_reactivate_nuclear(self):
        nuke = make_plant(70, 1.0, alive=False, retired=True, plant_type="nuclear",
                          end_of_life_turn=5)
        gas = make_plant(40, 1.0, alive=False, retired=True, end_of_life_turn=5)
        assert registry.reactivate_nuclear([nuke, gas], 6, 5) == 1
        assert nuke["alive"] and not nuke["retired"]
        assert nuke["end_of_life_turn"] == 11
        assert gas["retired"] is True

    def test_nuclear_has_short_life_span(self):
        rules = RuleBook.default()
        settings = GameSettings(nuclear_life_span=5, default_life_span=10)
        nuke = create_plant("n", "nuclear", rules.plant_config("nuclear"), 2, settings)
        gas = create_plant("g", "gas", rules.plant_config("gas"), 2, settings)
        assert nuke["end_of_life_turn"] == 7
        assert gas["end_of_life_turn"] == 12


# ══════════════════════════════════════════════════════════════════════
# Resource Aggregator Tests
# ══════════════════════════════════════════════════════════════════════

class TestResources:

    def setup_method(self):
        self.engine = make_engine()
        self.settings = self.engine.settings
        self.state = self.engine.initial_state(["p1"], ["Alice"])
        self.state["plants"] = [make_plant(50, 1.0, 0.0)]

    def test_imports_cover_share_of_shortfall(self):
        self.state["imports"]["percentage"] = 50
        energy = resources.compute_energy(self.state, self.settings)
        # demand 120, raw 50 → shortfall 70, half imported
        assert energy["imported_winter"] == pytest.approx(35)
        assert energy["supply_winter"] == pytest.approx(85)
        assert energy["import_target"] == pytest.approx(70 / 120 * 100)

    def test_summer_imports_need_flag(self):
        self.state["imports"]["percentage"] = 50
        energy = resources.compute_energy(self.state, self.settings)
        assert energy["imported_summer"] == 0

        self.state["imports"]["summer"] = True
        energy = resources.compute_energy(self.state, self.settings)
        assert energy["imported_summer"] == pytest.approx(45)

    def test_import_cost_and_pollution(self):
        imports = {"percentage": 50, "green": False, "summer": False}
        assert resources.import_cost(35, imports, self.settings) == pytest.approx(70)
        assert resources.import_pollution(35, imports, self.settings) == 18

        imports["green"] = True
        assert resources.import_cost(35, imports, self.settings) == pytest.approx(105)
        assert resources.import_pollution(35, imports, self.settings) == 0

    def test_zero_demand_has_no_shortfall(self):
        assert resources.shortfall_percentage(0, 10) == 0
        assert resources.shortfall_percentage(0, 0) == 0

    def test_supply_is_clamped_for_display(self):
        self.state["plants"] = [make_plant(300, 1.0)]
        energy = resources.compute_energy(self.state, self.settings)
        assert energy["supply_winter"] == 200
        assert energy["surplus_winter"] == pytest.approx(100)

    def test_environment_bar(self):
        plants = [make_plant(10, 1.0, pollution=50, land_use=0.1, biodiversity=0.2)]
        env = resources.compute_environment(plants, 0, 0.0, self.settings)
        assert env["pollution_bar"] == pytest.approx(0.25)
        assert env["biodiversity"] == pytest.approx(80)
        assert env["land_use"] == pytest.approx(10)
        assert env["bar"] == pytest.approx((0.9 + 0.8 + 0.75) / 3)

    def test_environment_shock_is_added_and_clamped(self):
        plants = [make_plant(10, 1.0)]
        env = resources.compute_environment(plants, 0, 0.5, self.settings)
        assert env["bar"] == 1.0
        env = resources.compute_environment(plants, 0, -2.0, self.settings)
        assert env["bar"] == 0.0

    def test_import_pollution_counts_in_bar(self):
        plants = [make_plant(10, 1.0, pollution=20)]
        env = resources.compute_environment(plants, 20, 0.0, self.settings)
        assert env["pollution"] == 20
        assert env["import_pollution"] == 20
        assert env["total_pollution"] == 40
        assert env["pollution_bar"] == pytest.approx(0.2)

    def test_support_floor(self):
        resources.update_support(self.state, -500)
        assert self.state["support"] == 0

    def test_request_build(self):
        self.state["money"]["money"] = 0
        assert resources.request_build(self.state, 0) is True

        self.state["money"]["money"] = 100
        assert resources.request_build(self.state, 150) is False
        assert self.state["money"]["money"] == 100

        assert resources.request_build(self.state, 100) is True
        assert self.state["money"]["money"] == 0

    def test_advance_money(self):
        money = self.state["money"]
        money["production"] = 100
        money["imports"] = 50
        resources.advance_money(self.state)
        assert money["money"] == 1850
        assert money["ever_in_debt"] is False

    def test_debt_is_remembered(self):
        money = self.state["money"]
        money["money"] = 0
        money["production"] = 1500
        resources.advance_money(self.state)
        assert money["in_debt"] is True
        money["money"] = 100
        resources.advance_money(self.state)
        assert money["ever_in_debt"] is True


# ══════════════════════════════════════════════════════════════════════
# Policy Tests
# ══════════════════════════════════════════════════════════════════════

class TestPolicies:

    def setup_method(self):
        self.rules = RuleBook.default()
        self.state = policies.new_policy_state()

    def test_probability_grows_with_support(self):
        policy = {"probability": 0.5, "tag": "env",
                  "requirements": [{"field": "support", "value": 50}]}
        bonuses = {"env": 0.0}
        values = [policies.real_probability(policy, bonuses, s) for s in range(0, 101, 10)]
        assert values == sorted(values)
        assert policies.real_probability(policy, bonuses, 40) == pytest.approx(0.45)
        assert policies.real_probability(policy, bonuses, 60) == pytest.approx(0.55)

    def test_no_support_requirement_uses_empty_product(self):
        policy = {"probability": 0.4, "tag": "env", "requirements": []}
        assert policies.real_probability(policy, {"env": 0.0}, 1) == pytest.approx(0.4)

    def test_probability_is_clamped(self):
        policy = {"probability": 0.9, "tag": "env",
                  "requirements": [{"field": "support", "value": 10}]}
        assert policies.real_probability(policy, {"env": 0.5}, 100) == 1.0

    def test_bonus_raises_probability(self):
        policy = {"probability": 0.5, "tag": "env", "requirements": []}
        low = policies.real_probability(policy, {"env": 0.0}, 50)
        high = policies.real_probability(policy, {"env": 0.2}, 50)
        assert high > low

    def test_requirements_fail_without_vote(self):
        rng = ScriptedRng(draws=[0])
        passed, effects, p = policies.request_policy(
            self.rules, self.state, "upgrade_wind", make_snapshot(support=30), rng)
        assert passed is False
        assert effects == []
        assert p is None
        assert self.state["voted"] == []
        assert rng.draws == [0]

    def test_vote_passes_on_low_draw(self):
        passed, effects, p = policies.request_policy(
            self.rules, self.state, "upgrade_wind", make_snapshot(), ScriptedRng(draws=[0]))
        assert passed is True
        assert effects == [{"field": "mult_wind", "value": 1}]
        assert p == pytest.approx(0.55)

    def test_vote_fails_on_high_draw(self):
        passed, effects, _ = policies.request_policy(
            self.rules, self.state, "upgrade_wind", make_snapshot(), ScriptedRng(draws=[99]))
        assert passed is False
        assert effects == []
        assert self.state["voted"] == ["upgrade_wind"]

    def test_one_vote_per_turn(self):
        policies.request_policy(self.rules, self.state, "upgrade_wind", make_snapshot(), ScriptedRng())
        with pytest.raises(ValueError, match="already voted"):
            policies.request_policy(self.rules, self.state, "upgrade_wind", make_snapshot(), ScriptedRng())
        policies.advance_turn(self.state)
        assert self.state["voted"] == []

    def test_unknown_policy(self):
        with pytest.raises(RuleLookupError):
            policies.request_policy(self.rules, self.state, "nope", make_snapshot(), ScriptedRng())

    def test_campaign_expires_after_length(self):
        policies.schedule_campaign(self.rules, self.state, "env_campaign")  # length 2
        policies.advance_turn(self.state)
        assert self.state["bonuses"]["env"] == 0
        assert self.state["campaigns"] == [["env", 0.1, 1]]
        folded = policies.advance_turn(self.state)
        assert folded == [["env", 0.1, 0]]
        assert self.state["bonuses"]["env"] == pytest.approx(0.1)
        assert self.state["campaigns"] == []

    def test_campaigns_accumulate(self):
        policies.schedule_campaign(self.rules, self.state, "env_campaign")
        policies.schedule_campaign(self.rules, self.state, "env_campaign")
        policies.advance_turn(self.state)
        policies.advance_turn(self.state)
        assert self.state["bonuses"]["env"] == pytest.approx(0.2)

    def test_reset(self):
        policies.schedule_campaign(self.rules, self.state, "env_campaign")
        self.state["bonuses"]["env"] = 0.3
        policies.reset(self.state)
        assert self.state == policies.new_policy_state()


# ══════════════════════════════════════════════════════════════════════
# Shock Tests
# ══════════════════════════════════════════════════════════════════════

class TestShocks:

    def setup_method(self):
        self.rules = RuleBook.default()
        self.state = shocks.new_shock_state(self.rules)
        self.no_forced = GameSettings(forced_shock_turn=-1)

    def test_pool_exhausts_without_repeats(self):
        rng = random.Random(3)
        pool = list(self.state["pool"])
        drawn = []
        for turn in range(len(pool)):
            shocks.select_new_shock(self.rules, self.state, turn, self.no_forced, rng)
            drawn.append(self.state["current"])
        assert sorted(drawn) == sorted(pool)
        assert len(set(drawn)) == len(drawn)

        shown = shocks.select_new_shock(self.rules, self.state, 99, self.no_forced, rng)
        assert shown is False
        assert self.state["current"] is None

    def test_forced_shock_at_its_turn(self):
        settings = GameSettings(forced_shock_turn=3)
        size = len(self.state["pool"])
        shown = shocks.select_new_shock(self.rules, self.state, 3, settings, ScriptedRng(draws=[100]))
        assert shown is True
        assert self.state["current"] == "nuc_reintro"
        assert len(self.state["pool"]) == size
        assert "nuc_reintro" not in self.state["pool"]

    def test_visibility_roll(self):
        shown = shocks.select_new_shock(self.rules, self.state, 0, self.no_forced,
                                        ScriptedRng(draws=[81]))
        assert shown is False
        shown = shocks.select_new_shock(self.rules, self.state, 1, self.no_forced,
                                        ScriptedRng(draws=[80]))
        assert shown is True

    def test_visibility_roll_has_100_outcomes(self):
        bounds = []

        class RecordingRng(ScriptedRng):
            def randint(self, a, b):
                bounds.append((a, b))
                return super().randint(a, b)

        shocks.select_new_shock(self.rules, self.state, 0, self.no_forced, RecordingRng())
        assert bounds == [(0, 99)]

    def test_forced_turn_keeps_weather(self):
        settings = GameSettings(forced_shock_turn=1)
        shocks.select_new_shock(self.rules, self.state, 0, settings,
                                ScriptedRng(picks=["severe_weather"]))
        assert self.state["severe_weather"] is True
        shocks.select_new_shock(self.rules, self.state, 1, settings, ScriptedRng())
        assert self.state["current"] == "nuc_reintro"
        assert self.state["severe_weather"] is True

    def test_weather_toggles_on_and_off(self):
        rng = ScriptedRng(picks=["severe_weather", "cold_spell"])
        shocks.select_new_shock(self.rules, self.state, 0, self.no_forced, rng)
        assert self.state["severe_weather"] is True
        shocks.select_new_shock(self.rules, self.state, 1, self.no_forced, rng)
        assert self.state["severe_weather"] is False

    def test_reward_path(self):
        shocks.select_new_shock(self.rules, self.state, 0, self.no_forced,
                                ScriptedRng(picks=["cold_spell"]))
        effects = shocks.show(self.rules, self.state, make_snapshot(supply_w=150, demand_w=120))
        assert effects == [{"field": "support", "value": 5}]
        assert self.state["path"] == "reward"
        assert self.state["survived"] == 1
        assert shocks.can_acknowledge(self.state)

    def test_reaction_path(self):
        shocks.select_new_shock(self.rules, self.state, 0, self.no_forced,
                                ScriptedRng(picks=["cold_spell"]))
        effects = shocks.show(self.rules, self.state,
                              make_snapshot(supply_w=100, demand_w=120, money=100))
        assert effects == []
        assert self.state["path"] == "reaction"
        assert self.state["survived"] == 0
        # Buying power needs 200 money; calling for savings needs 10 support
        assert [r["enabled"] for r in self.state["reactions"]] == [False, True]
        assert not shocks.can_acknowledge(self.state)

    def test_select_reaction_validates_index(self):
        shocks.select_new_shock(self.rules, self.state, 0, self.no_forced,
                                ScriptedRng(picks=["cold_spell"]))
        shocks.show(self.rules, self.state, make_snapshot(supply_w=100, money=100))
        with pytest.raises(ValueError, match="Invalid reaction index"):
            shocks.select_reaction(self.state, 3)
        with pytest.raises(ValueError, match="not available"):
            shocks.select_reaction(self.state, 0)
        effects = shocks.select_reaction(self.state, 1)
        assert effects == [{"field": "support", "value": -10}]
        assert self.state["status"] == shocks.IDLE

    def test_shock_without_requirements(self):
        shocks.select_new_shock(self.rules, self.state, 0, self.no_forced,
                                ScriptedRng(picks=["dec_raw_cost_20"]))
        assert shocks.show(self.rules, self.state, make_snapshot()) == [{"field": "money", "value": 200}]

        state = shocks.new_shock_state(self.rules)
        shocks.select_new_shock(self.rules, state, 3, GameSettings(), ScriptedRng())
        assert shocks.show(self.rules, state, make_snapshot()) == []
        assert state["path"] == "reaction"

    def test_energy_requirement_uses_surplus(self):
        snapshot = make_snapshot(supply_w=130, demand_w=120)
        assert shocks.requirement_value("energy_w", snapshot) == 10
        assert shocks.requirements_met([{"field": "energy_w", "value": 10}], snapshot)
        assert not shocks.requirements_met([{"field": "energy_w", "value": 11}], snapshot)

    def test_show_requires_selected_shock(self):
        with pytest.raises(ValueError, match="No shock"):
            shocks.show(self.rules, self.state, make_snapshot())


# ══════════════════════════════════════════════════════════════════════
# Model Reconciliation Tests
# ══════════════════════════════════════════════════════════════════════

class TestModel:

    def setup_method(self):
        self.state = {"models": grid_model.new_models()}

    def rows(self):
        return [
            {"season": 0, "week": 0, "avl_gas": 0.9, "cap_ele_gas": 50, "dem_base": 110},
            {"season": 1, "week": 26, "avl_gas": 0.7, "cap_ele_gas": 50, "dem_base": 80},
        ]

    def test_new_models_are_invalid(self):
        for model in self.state["models"].values():
            assert model["state"] == CoherencyState.INVALID.value
            assert not grid_model.is_valid(model)

    def test_fetch_makes_shared(self):
        grid_model.apply_fetch(self.state, self.rows())
        winter = self.state["models"]["winter"]
        assert winter["state"] == CoherencyState.SHARED.value
        assert winter["availability"] == {"gas": 0.9}
        assert winter["capacity"] == {"gas": 50}
        assert winter["demand"] == 110
        assert self.state["models"]["summer"]["availability"] == {"gas": 0.7}

    def test_local_edit_keeps_state(self):
        grid_model.apply_fetch(self.state, self.rows())
        grid_model.record_plant_edit(self.state, ModelColumn.CAP, PlantType.GAS, 80)
        winter = self.state["models"]["winter"]
        assert winter["state"] == CoherencyState.SHARED.value
        assert winter["pending"] == [{"column": "cap_ele", "plant_type": "gas", "value": 80.0}]

    def test_reset_invalidates(self):
        grid_model.apply_fetch(self.state, self.rows())
        grid_model.reset_models(self.state)
        assert not grid_model.models_valid(self.state)

    def test_trees_are_not_tracked(self):
        assert grid_model.record_plant_edit(self.state, ModelColumn.CAP, PlantType.TREE, 5) is False
        assert self.state["models"]["winter"]["pending"] == []

    def test_clear_sent_keeps_newer_edits(self):
        grid_model.record_plant_edit(self.state, "cap_ele", "gas", 40)
        sent, upserts = grid_model.outgoing_edits(self.state)
        grid_model.record_plant_edit(self.state, "cap_ele", "wind", 25)
        grid_model.acknowledge_sync(self.state, sent)
        for model in self.state["models"].values():
            assert model["pending"] == [{"column": "cap_ele", "plant_type": "wind", "value": 25.0}]

    def test_outgoing_edits_collapse_to_latest(self):
        grid_model.record_plant_edit(self.state, "cap_ele", "gas", 40)
        grid_model.record_plant_edit(self.state, "cap_ele", "solar", 20)
        grid_model.record_plant_edit(self.state, "cap_ele", "gas", 60)
        sent, upserts = grid_model.outgoing_edits(self.state)
        assert len(sent) == 3
        assert upserts == [(ModelColumn.CAP, PlantType.GAS, 60.0),
                           (ModelColumn.CAP, PlantType.SOLAR, 20.0)]

    def test_row_season_discriminator(self):
        assert grid_model.row_season({"season": 0.4}) is Season.WINTER
        assert grid_model.row_season({"season": 0.5}) is Season.SUMMER
        with pytest.raises(ValueError):
            grid_model.row_season({})

    def test_bad_row_leaves_both_models_alone(self):
        rows = self.rows()
        del rows[1]["season"]
        with pytest.raises(ValueError, match="season"):
            grid_model.apply_fetch(self.state, rows)
        assert not grid_model.models_valid(self.state)
        assert self.state["models"]["winter"]["demand"] == 0.0

    def test_non_numeric_values_raise(self):
        with pytest.raises(ValueError, match="dem_base"):
            grid_model.apply_fetch(self.state, [{"season": 0, "dem_base": "lots"}])
        with pytest.raises(ValueError, match="avl_gas"):
            grid_model.apply_fetch(self.state, [{"season": 0, "avl_gas": None}])
        with pytest.raises(ValueError, match="not an object"):
            grid_model.apply_fetch(self.state, [[0, 1]])
        assert not grid_model.models_valid(self.state)

    def test_peak_weeks(self):
        assert grid_model.peak_weeks(0) == (0, 26)
        assert grid_model.peak_weeks(2) == (312, 338)

    def test_model_supply(self):
        model = grid_model.new_model("winter")
        model["capacity"] = {"gas": 100, "wind": 40}
        model["availability"] = {"gas": 0.5, "wind": 1.0}
        assert grid_model.model_supply(model) == pytest.approx(90)
        assert grid_model.model_supply(model, {"wind": 0.5}) == pytest.approx(70)


class TestColumns:

    def test_wire_names(self):
        assert ModelColumn.CAP.wire_name(PlantType.GAS) == "cap_ele_gas"
        assert ModelColumn.AVL.wire_name(PlantType.SOLAR) == "avl_sol"
        assert ModelColumn.AVL.wire_name(PlantType.HYDRO) == "avl_res"
        assert ModelColumn.DEM.wire_name() == "dem_base"

    def test_wire_ids(self):
        assert ModelColumn.CAP.wire_id(PlantType.GAS) == 29
        assert ModelColumn.AVL.wire_id(PlantType.SOLAR) == 3
        assert ModelColumn.DEM.wire_id() == 231

    def test_inverse_mappings(self):
        for column in (ModelColumn.CAP, ModelColumn.AVL):
            for plant_type in PlantType:
                if plant_type.model_suffix is None:
                    continue
                assert ModelColumn.from_wire_name(column.wire_name(plant_type)) == (column, plant_type)
                assert ModelColumn.from_wire_id(column.wire_id(plant_type)) == (column, plant_type)
        assert ModelColumn.from_wire_id(231) == (ModelColumn.DEM, None)

    def test_untracked_types_raise(self):
        with pytest.raises(ValueError):
            ModelColumn.CAP.wire_name(PlantType.TREE)
        with pytest.raises(ValueError):
            ModelColumn.from_wire_name("avl_xyz")

    def test_enum_parsing(self):
        assert PlantType.from_string("Wind") is PlantType.WIND
        assert PlantType.from_int(PlantType.RIVER.to_int()) is PlantType.RIVER
        assert ResourceType.from_string("mult_solar") is ResourceType.MULT_SOLAR
        with pytest.raises(ValueError, match="Unknown plant type"):
            PlantType.from_string("coal")
        with pytest.raises(ValueError):
            PlantType.from_int(99)

    def test_members_parse_to_themselves(self):
        assert PlantType.from_string(PlantType.GAS) is PlantType.GAS
        assert Season.from_string(Season.SUMMER) is Season.SUMMER
        assert ResourceType.from_string(ResourceType.MONEY) is ResourceType.MONEY
        assert ModelColumn.from_string(ModelColumn.AVL) is ModelColumn.AVL
        assert RuleBook.default().plant_config(PlantType.GAS)["name"]


# ══════════════════════════════════════════════════════════════════════
# Turn Controller Tests
# ══════════════════════════════════════════════════════════════════════

class TestEngineSetup:

    def setup_method(self):
        self.engine = make_engine()

    def test_initial_state(self):
        state = self.engine.initial_state(["p1"], ["Alice"])
        assert state["game"] == "swissgrid"
        assert state["status"] == "not_started"
        assert state["money"]["money"] == 1000
        assert state["support"] == 60
        assert [p["type"] for p in state["plants"]] == ["nuclear", "gas", "river"]
        assert len(state["slots"]) == catalog.NUM_SLOTS
        assert "hydro" in state["slots"][0]["allowed"]
        assert "hydro" not in state["slots"][5]["allowed"]
        assert self.engine.get_valid_actions(state, "p1") == [{"kind": "start"}]

    def test_single_player_only(self):
        with pytest.raises(ValueError, match="single-player"):
            self.engine.initial_state(["p1", "p2"], ["Alice", "Bob"])

    def test_actions_before_start_rejected(self):
        state = self.engine.initial_state(["p1"], ["Alice"])
        with pytest.raises(ValueError, match="before start"):
            act(self.engine, state, "next_turn")

    def test_unknown_player_rejected(self):
        state = self.engine.initial_state(["p1"], ["Alice"])
        with pytest.raises(ValueError, match="Unknown player"):
            self.engine.apply_action(state, "p2", {"kind": "start"})

    def test_start(self):
        state = make_started(self.engine)
        assert state["status"] == "playing"
        assert state["phase"] == "build"
        assert state["plant_stats"] == {"nuclear": 1, "gas": 1, "river": 1}
        # 70 × 1.0 + 40 × 1.0 + 30 × 0.6
        assert state["resources"]["energy"]["supply_winter"] == pytest.approx(128)

    def test_offline_start_records_no_edits(self):
        state = make_started(self.engine)
        assert state["models"]["winter"]["pending"] == []

    def test_online_start_records_capacities(self):
        engine = make_engine(offline=False)
        state = make_started(engine)
        pending = state["models"]["winter"]["pending"]
        assert {e["plant_type"]: e["value"] for e in pending} == {
            "nuclear": 70.0, "gas": 40.0, "river": 30.0}
        assert state["models"]["summer"]["pending"] == pending

    def test_player_view_hides_pool(self):
        state = make_started(self.engine)
        view = self.engine.get_player_view(state, "p1")
        assert isinstance(view["shock"]["pool"], int)
        assert "log" not in view
        assert isinstance(state["shock"]["pool"], list)

    def test_phase_info(self):
        state = make_started(self.engine)
        info = self.engine.get_phase_info(state)
        assert info["phase"] == "build"
        assert info["turn"] == 0
        assert info["remaining_turns"] == 10


class TestEngineBuild:

    def setup_method(self):
        self.engine = make_engine(draws=[100] * 10)
        self.state = make_started(self.engine)

    def test_build_instant_plant(self):
        result = act(self.engine, self.state, "build", slot=2, plant_type="gas")
        state = result.new_state
        assert result.success
        assert state["money"]["money"] == 700
        assert state["slots"][2]["status"] == "done"
        plant = registry.find_plant(state, state["slots"][2]["plant_id"])
        assert plant["slot"] == 2
        assert state["plant_stats"]["gas"] == 2

    def test_build_takes_turns(self):
        state = act(self.engine, self.state, "build", slot=3, plant_type="wind").new_state
        slot = state["slots"][3]
        assert slot["status"] == "building"
        assert registry.find_plant(state, slot["plant_id"]) is None

        state = act(self.engine, state, "next_turn").new_state
        slot = state["slots"][3]
        assert slot["status"] == "done"
        assert registry.find_plant(state, slot["plant_id"])["type"] == "wind"

    def test_every_allowed_type_builds(self):
        for plant_type in self.state["slots"][0]["allowed"]:
            result = act(self.engine, self.state, "build", slot=0, plant_type=plant_type)
            assert result.success
            assert result.new_state["slots"][0]["plant_id"] is not None

    def test_build_time_overload(self):
        self.state["overloads"]["wind"]["build_time"] = -1
        state = act(self.engine, self.state, "build", slot=3, plant_type="wind").new_state
        assert state["slots"][3]["status"] == "done"

    def test_slot_type_restrictions(self):
        with pytest.raises(ValueError, match="Cannot build hydro"):
            act(self.engine, self.state, "build", slot=5, plant_type="hydro")
        result = act(self.engine, self.state, "build", slot=0, plant_type="hydro")
        assert result.new_state["slots"][0]["status"] == "building"

    def test_bad_slot_index(self):
        with pytest.raises(ValueError, match="Invalid slot index"):
            act(self.engine, self.state, "build", slot=42, plant_type="gas")

    def test_occupied_slot(self):
        state = act(self.engine, self.state, "build", slot=2, plant_type="gas").new_state
        with pytest.raises(ValueError, match="not free"):
            act(self.engine, state, "build", slot=2, plant_type="solar")

    def test_not_enough_money(self):
        self.state["money"]["money"] = 100
        result = act(self.engine, self.state, "build", slot=2, plant_type="gas")
        assert result.success is False
        assert result.new_state["money"]["money"] == 100
        assert result.new_state["slots"][2]["status"] == "idle"

    def test_state_not_mutated(self):
        act(self.engine, self.state, "build", slot=2, plant_type="gas")
        assert self.state["slots"][2]["status"] == "idle"
        assert self.state["money"]["money"] == 1000

    def test_upgrade_and_downgrade(self):
        state = act(self.engine, self.state, "upgrade", plant_id="p1").new_state
        gas = registry.find_plant(state, "p1")
        assert gas["multiplier"] == 2
        assert state["money"]["money"] == 850

        result = act(self.engine, state, "downgrade", plant_id="p1")
        gas = registry.find_plant(result.new_state, "p1")
        assert result.success
        assert gas["multiplier"] == 1
        assert gas["capacity"] == 40

    def test_upgrade_at_max(self):
        result = act(self.engine, self.state, "upgrade", plant_id="p0")
        assert result.success is False
        assert result.new_state["money"]["money"] == 1000

    def test_delete(self):
        state = act(self.engine, self.state, "build", slot=2, plant_type="gas").new_state
        plant_id = state["slots"][2]["plant_id"]
        state = act(self.engine, state, "delete", plant_id=plant_id).new_state
        assert state["slots"][2]["status"] == "idle"
        assert registry.find_plant(state, plant_id) is None
        assert state["plant_stats"]["gas"] == 1

    def test_cancel_construction(self):
        state = act(self.engine, self.state, "build", slot=3, plant_type="wind").new_state
        plant_id = state["slots"][3]["plant_id"]
        state = act(self.engine, state, "delete", plant_id=plant_id).new_state
        assert state["slots"][3]["status"] == "idle"
        assert state["slots"][3]["pending"] is None

    def test_delete_unknown_plant(self):
        with pytest.raises(ValueError, match="Unknown plant"):
            act(self.engine, self.state, "delete", plant_id="p99")

    def test_toggle_plant(self):
        state = act(self.engine, self.state, "toggle_plant", plant_id="p1").new_state
        assert registry.find_plant(state, "p1")["alive"] is False
        assert state["resources"]["energy"]["supply_winter"] == pytest.approx(88)
        state = act(self.engine, state, "toggle_plant", plant_id="p1").new_state
        assert state["resources"]["energy"]["supply_winter"] == pytest.approx(128)

    def test_set_imports(self):
        state = act(self.engine, self.state, "set_imports", percentage=40, green=True).new_state
        assert state["imports"] == {"percentage": 40, "green": True, "summer": False}
        with pytest.raises(ValueError, match="between 0 and 100"):
            act(self.engine, state, "set_imports", percentage=150)

    def test_borrow_once(self):
        state = act(self.engine, self.state, "borrow").new_state
        assert state["money"]["money"] == 1500
        assert state["money"]["borrowed"] is True
        with pytest.raises(ValueError, match="already"):
            act(self.engine, state, "borrow")


class TestEnginePolicies:

    def test_vote_applies_effects(self):
        engine = make_engine(draws=[0])
        state = make_started(engine)
        result = act(engine, state, "vote_policy", policy_id="upgrade_wind")
        assert result.success
        assert "accepted" in result.log[0]
        assert result.new_state["overloads"]["wind"]["max_multiplier"] == 1
        with pytest.raises(ValueError, match="already voted"):
            act(engine, result.new_state, "vote_policy", policy_id="upgrade_wind")

    def test_demand_policy_lowers_demand(self):
        engine = make_engine(draws=[0])
        state = make_started(engine)
        state = act(engine, state, "vote_policy", policy_id="home_regulation").new_state
        assert state["demand"] == {"winter": 112.0, "summer": 85.0}
        assert state["support"] == 55

    def test_vote_refused(self):
        engine = make_engine(draws=[0])
        state = make_started(engine)
        state["support"] = 10
        result = act(engine, state, "vote_policy", policy_id="upgrade_wind")
        assert result.success is False
        assert result.new_state["policies"]["voted"] == []

    def test_campaign(self):
        engine = make_engine()
        state = make_started(engine)
        state = act(engine, state, "start_campaign", campaign_id="env_campaign").new_state
        assert state["money"]["money"] == 900
        assert state["policies"]["campaigns"] == [["env", 0.1, 2]]

    def test_apply_effect_routing(self):
        engine = make_engine()
        state = make_started(engine)
        engine.apply_effect(state, {"field": "environment", "value": -0.1})
        engine.apply_effect(state, {"field": "money", "value": -50})
        engine.apply_effect(state, {"field": "build_time_solar", "value": -1})
        engine.apply_effect(state, {"field": "mult_solar", "value": 2})
        assert state["environment_shock"] == pytest.approx(-0.1)
        assert state["money"]["money"] == 950
        assert state["overloads"]["solar"] == {"max_multiplier": 2, "build_time": -1}


class TestEngineTurns:

    def test_shock_reward_holds_turn(self):
        engine = make_engine(draws=[0], picks=["dec_raw_cost_20"])
        state = make_started(engine)
        state = act(engine, state, "next_turn").new_state
        assert state["phase"] == "shock"
        assert state["turn"] == 0
        assert state["money"]["money"] == 1200
        assert engine.get_valid_actions(state, "p1")[0] == {"kind": "acknowledge_shock"}
        with pytest.raises(ValueError, match="Invalid action kind for shock"):
            act(engine, state, "build", slot=2, plant_type="gas")

        state = act(engine, state, "acknowledge_shock").new_state
        assert state["phase"] == "build"
        assert state["turn"] == 1
        assert state["remaining_turns"] == 9
        # 1200 + budget 1000 − production 105
        assert state["money"]["money"] == 2095
        assert state["shock"]["survived"] == 1

    def test_shock_reaction(self):
        engine = make_engine(draws=[0], picks=["cold_spell"])
        state = make_started(engine)
        state["demand"]["winter"] = 150
        state = act(engine, state, "next_turn").new_state
        assert state["shock"]["path"] == "reaction"
        with pytest.raises(ValueError, match="Invalid reaction index"):
            act(engine, state, "select_reaction", index=5)
        with pytest.raises(ValueError, match="cannot be dismissed"):
            act(engine, state, "acknowledge_shock")

        state = act(engine, state, "select_reaction", index=0).new_state
        assert state["phase"] == "build"
        assert state["turn"] == 1
        assert state["money"]["money"] == 800 + 1000 - 105

    def test_hidden_shock_advances(self):
        engine = make_engine(draws=[100])
        state = make_started(engine)
        state = act(engine, state, "next_turn").new_state
        assert state["phase"] == "build"
        assert state["turn"] == 1
        assert state["demand"] == {"winter": 124.0, "summer": 93.0}

    def test_forced_shock_reactivates_nuclear(self):
        engine = make_engine(draws=[100] * 3, nuclear_life_span=2)
        state = make_started(engine)
        state = act(engine, state, "next_turn").new_state
        state = act(engine, state, "next_turn").new_state
        assert state["turn"] == 2
        assert registry.find_plant(state, "p0")["retired"] is True
        with pytest.raises(ValueError, match="end of life"):
            act(engine, state, "toggle_plant", plant_id="p0")

        state = act(engine, state, "next_turn").new_state
        state = act(engine, state, "next_turn").new_state
        assert state["shock"]["current"] == "nuc_reintro"
        assert state["phase"] == "shock"

        state = act(engine, state, "select_reaction", index=0).new_state
        nuke = registry.find_plant(state, "p0")
        assert nuke["alive"] is True
        assert nuke["retired"] is False
        assert nuke["end_of_life_turn"] == 5
        assert state["support"] == 50
        assert state["turn"] == 4

    def test_game_ends(self):
        engine = make_engine(draws=[100] * 5, n_turns=2)
        state = make_started(engine)
        state = act(engine, state, "next_turn").new_state
        result = act(engine, state, "next_turn")
        state = result.new_state
        assert result.game_over
        assert state["status"] == "ended"
        assert set(state["score"]) == {
            "shocks_survived", "supply_winter", "supply_summer", "in_debt", "ever_in_debt",
            "support", "net_zero", "environment_pct", "import_pct", "borrowed"}
        assert engine.get_valid_actions(state, "p1") == [{"kind": "reset"}]
        assert engine.get_waiting_for(state) == []
        with pytest.raises(ValueError, match="Game is over"):
            act(engine, state, "next_turn")

    def test_environment_impact_is_transient(self):
        engine = make_engine(draws=[100] * 2)
        state = make_started(engine)
        bar = state["resources"]["environment"]["bar"]
        engine.apply_effect(state, {"field": "environment", "value": -0.2})
        state = act(engine, state, "set_imports", percentage=0).new_state
        assert state["resources"]["environment"]["bar"] == pytest.approx(bar - 0.2)
        state = act(engine, state, "next_turn").new_state
        assert state["resources"]["environment"]["bar"] == pytest.approx(bar)

    def test_reset(self):
        engine = make_engine()
        state = make_started(engine)
        state = act(engine, state, "build", slot=2, plant_type="gas").new_state
        result = act(engine, state, "reset")
        state = result.new_state
        assert state["status"] == "not_started"
        assert state["money"]["money"] == 1000
        assert all(s["status"] == "idle" for s in state["slots"])
        assert engine.get_valid_actions(state, "p1") == [{"kind": "start"}]

    def test_reset_refills_same_dict(self):
        engine = make_engine()
        state = make_started(engine)
        same = engine.reset(state)
        assert same is state
        assert state["status"] == "not_started"


class TestEngineModel:

    def test_apply_model_fetch_apportions(self):
        engine = make_engine(offline=False)
        state = make_started(engine)
        state = act(engine, state, "build", slot=2, plant_type="gas").new_state
        sent, _ = grid_model.outgoing_edits(state)
        rows = [
            {"season": 0, "cap_ele_gas": 100, "avl_gas": 0.5, "dem_base": 130},
            {"season": 1, "cap_ele_gas": 100, "avl_gas": 0.25, "dem_base": 95},
        ]
        snapshot = engine.apply_model_fetch(state, rows, sent, apportion=True)

        gas = [p for p in state["plants"] if p["type"] == "gas"]
        assert [p["capacity"] for p in gas] == [50, 50]
        assert all(p["availability"] == {"winter": 0.5, "summer": 0.25} for p in gas)
        assert snapshot["energy"]["supply_winter"] == pytest.approx(50)
        assert snapshot["energy"]["demand_winter"] == 130
        assert state["models"]["winter"]["pending"] == []

    def test_offline_ignores_model(self):
        engine = make_engine()
        state = make_started(engine)
        rows = [{"season": 0, "cap_ele_gas": 1, "avl_gas": 1, "dem_base": 10},
                {"season": 1, "cap_ele_gas": 1, "avl_gas": 1, "dem_base": 10}]
        snapshot = engine.apply_model_fetch(state, rows)
        assert snapshot["energy"]["supply_winter"] == pytest.approx(128)

    def test_invalidate_falls_back_to_estimate(self):
        engine = make_engine(offline=False)
        state = make_started(engine)
        rows = [{"season": 0, "cap_ele_gas": 1, "avl_gas": 1, "dem_base": 10},
                {"season": 1, "cap_ele_gas": 1, "avl_gas": 1, "dem_base": 10}]
        engine.apply_model_fetch(state, rows)
        snapshot = engine.invalidate_models(state)
        assert snapshot["energy"]["demand_winter"] == 120


# ══════════════════════════════════════════════════════════════════════
# Scoring Tests
# ══════════════════════════════════════════════════════════════════════

class TestScoring:

    def test_final_score(self):
        engine = make_engine()
        state = make_started(engine)
        state["shock"]["survived"] = 3
        snapshot = resources.compute_snapshot(state, engine.settings)
        score = compute_final_score(state, snapshot)
        assert score["shocks_survived"] == 3
        assert score["supply_winter"] == pytest.approx(128)
        assert score["in_debt"] is False
        assert score["support"] == 60
        assert score["net_zero"] is False
        assert score["import_pct"] == 0
        assert 0 <= score["environment_pct"] <= 100

    def test_import_percentage_guards_zero_supply(self):
        assert import_percentage(10, 0) == 0
        assert import_percentage(10, 100) == 10


# ══════════════════════════════════════════════════════════════════════
# Configuration Tests
# ══════════════════════════════════════════════════════════════════════

class TestConfiguration:

    def catalog_dict(self):
        return {
            "plants": catalog.PLANTS,
            "policies": catalog.POLICIES,
            "campaigns": catalog.CAMPAIGNS,
            "shocks": catalog.SHOCKS,
        }

    def test_rule_book_from_json(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps(self.catalog_dict()))
        rules = RuleBook.from_json(path)
        assert rules.policy_ids() == list(catalog.POLICIES)
        assert "nuc_reintro" not in rules.shock_pool()

    def test_rule_book_rejects_unknown_field(self, tmp_path):
        data = self.catalog_dict()
        data = json.loads(json.dumps(data))
        data["policies"]["upgrade_wind"]["effects"][0]["field"] = "coal"
        path = tmp_path / "rules.json"
        path.write_text(json.dumps(data))
        with pytest.raises(ValueError, match="Unknown resource type"):
            RuleBook.from_json(path)

    def test_rule_book_requires_sections(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"plants": {}}))
        with pytest.raises(ValueError, match="missing"):
            RuleBook.from_json(path)

    def test_lookups_return_copies(self):
        rules = RuleBook.default()
        rules.policy("upgrade_wind")["effects"].clear()
        assert rules.policy("upgrade_wind")["effects"]

    def test_unknown_ids(self):
        rules = RuleBook.default()
        with pytest.raises(RuleLookupError):
            rules.shock("meteor")
        with pytest.raises(RuleLookupError):
            rules.campaign("nope")

    def test_settings_from_env(self):
        settings = GameSettings.from_env({
            "SWISSGRID_N_TURNS": "5",
            "SWISSGRID_OFFLINE": "false",
            "SWISSGRID_MODEL_URL": "http://model.test",
            "SWISSGRID_WEATHER_FACTOR": "0.25",
        })
        assert settings.n_turns == 5
        assert settings.offline is False
        assert settings.model_url == "http://model.test"
        assert settings.weather_factor == 0.25
        assert settings.start_money == 1000

    def test_settings_reject_bad_values(self):
        with pytest.raises(ValueError, match="SWISSGRID_N_TURNS"):
            GameSettings.from_env({"SWISSGRID_N_TURNS": "many"})
