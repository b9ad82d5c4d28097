"""
Rule book: read-only lookups into the game content.

A RuleBook is built once per engine from the default catalog or from a JSON
file with the same shape. It validates every requirement and effect field
up front, so the rest of the engine can trust them. Lookups hand out
copies; callers may store the results in the game state.
"""

import json
import logging
from copy import deepcopy

from swissgrid.grid import catalog
from swissgrid.grid.types import PlantType, ResourceType

logger = logging.getLogger(__name__)

_PLANT_KEYS = ("build_cost", "build_time", "production_cost", "capacity",
               "availability", "pollution", "land_use", "biodiversity", "multiplier")
_MULTIPLIER_KEYS = ("max_elements", "cost", "capacity", "production_cost",
                    "pollution", "land_use", "biodiversity")


class RuleLookupError(ValueError):
    """An id that does not exist in the rule book."""


class RuleBook:

    def __init__(self, plants, policies, campaigns, shocks,
                 forced_shock=catalog.FORCED_SHOCK,
                 weather_shock=catalog.WEATHER_SHOCK,
                 starting_plants=catalog.STARTING_PLANTS,
                 slot_types=catalog.SLOT_TYPES,
                 num_slots=catalog.NUM_SLOTS,
                 hydro_slots=catalog.HYDRO_SLOTS,
                 policy_tags=catalog.POLICY_TAGS):
        self._plants = {PlantType.from_string(k).value: deepcopy(v) for k, v in plants.items()}
        self._policies = deepcopy(policies)
        self._campaigns = deepcopy(campaigns)
        self._shocks = deepcopy(shocks)
        self.forced_shock = forced_shock
        self.weather_shock = weather_shock
        self.starting_plants = tuple(PlantType.from_string(t).value for t in starting_plants)
        self.slot_types = tuple(PlantType.from_string(t).value for t in slot_types)
        self.num_slots = num_slots
        self.hydro_slots = tuple(hydro_slots)
        self.policy_tags = tuple(policy_tags)
        self._validate()

    @classmethod
    def default(cls):
        return cls(catalog.PLANTS, catalog.POLICIES, catalog.CAMPAIGNS, catalog.SHOCKS)

    @classmethod
    def from_json(cls, path):
        """
        Load a rule book from a JSON file.

        Top-level keys: plants, policies, campaigns, shocks (required) and
        optionally forced_shock, weather_shock, starting_plants, slot_types,
        num_slots, hydro_slots, policy_tags.
        """
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        missing = [k for k in ("plants", "policies", "campaigns", "shocks") if k not in data]
        if missing:
            raise ValueError(f"Rule file {path} is missing: {', '.join(missing)}")
        optional = {k: data[k] for k in (
            "forced_shock", "weather_shock", "starting_plants", "slot_types",
            "num_slots", "hydro_slots", "policy_tags") if k in data}
        logger.info("Loaded rule book from %s", path)
        return cls(data["plants"], data["policies"], data["campaigns"], data["shocks"], **optional)

    # ── Validation ────────────────────────────────────────────────────

    def _validate(self):
        for plant_type, cfg in self._plants.items():
            missing = [k for k in _PLANT_KEYS if k not in cfg]
            if missing:
                raise ValueError(f"Plant config {plant_type} is missing: {', '.join(missing)}")
            missing = [k for k in _MULTIPLIER_KEYS if k not in cfg["multiplier"]]
            if missing:
                raise ValueError(f"Multiplier config {plant_type} is missing: {', '.join(missing)}")
            if cfg["multiplier"]["max_elements"] < 1:
                raise ValueError(f"Multiplier config {plant_type}: max_elements must be >= 1")

        for policy_id, policy in self._policies.items():
            if policy["tag"] not in self.policy_tags:
                # Kept loadable: request_policy refuses it at vote time
                logger.warning("Policy %s has unknown tag %r", policy_id, policy["tag"])
            self._check_fields(policy.get("requirements", []), f"policy {policy_id}")
            self._check_fields(policy.get("effects", []), f"policy {policy_id}")

        for campaign_id, campaign in self._campaigns.items():
            if len(campaign.get("effects", [])) != 1:
                raise ValueError(f"Campaign {campaign_id} must have exactly one effect")
            self._check_fields(campaign["effects"], f"campaign {campaign_id}")

        for shock_id, shock in self._shocks.items():
            self._check_fields(shock.get("requirements", []), f"shock {shock_id}")
            self._check_fields(shock.get("reward", {}).get("effects", []), f"shock {shock_id}")
            if len(shock.get("reactions", [])) > 3:
                raise ValueError(f"Shock {shock_id} has more than 3 reactions")
            for reaction in shock.get("reactions", []):
                self._check_fields(reaction.get("effects", []), f"shock {shock_id}")

        if self.forced_shock not in self._shocks:
            raise RuleLookupError(f"Forced shock {self.forced_shock!r} is not defined")
        for plant_type in self.starting_plants + self.slot_types:
            if plant_type not in self._plants:
                raise RuleLookupError(f"No plant config for {plant_type!r}")

    @staticmethod
    def _check_fields(entries, owner):
        for entry in entries:
            try:
                ResourceType.from_string(entry["field"])
            except ValueError as e:
                raise ValueError(f"{owner}: {e}") from e
            if not isinstance(entry.get("value"), (int, float)):
                raise ValueError(f"{owner}: value of {entry['field']} must be a number")

    # ── Plants ────────────────────────────────────────────────────────

    def plant_config(self, plant_type):
        key = PlantType.from_string(plant_type).value
        if key not in self._plants:
            raise RuleLookupError(f"No plant config for {key!r}")
        return deepcopy(self._plants[key])

    def multiplier(self, plant_type):
        return self.plant_config(plant_type)["multiplier"]

    # ── Policies / Campaigns ──────────────────────────────────────────

    def policy_ids(self):
        return list(self._policies)

    def policy(self, policy_id):
        if policy_id not in self._policies:
            raise RuleLookupError(f"Unknown policy: {policy_id!r}")
        return deepcopy(self._policies[policy_id])

    def campaign_ids(self):
        return list(self._campaigns)

    def campaign(self, campaign_id):
        if campaign_id not in self._campaigns:
            raise RuleLookupError(f"Unknown campaign: {campaign_id!r}")
        return deepcopy(self._campaigns[campaign_id])

    # ── Shocks ────────────────────────────────────────────────────────

    def shock_pool(self):
        """Every drawable shock id, without the forced one."""
        return [sid for sid in self._shocks if sid != self.forced_shock]

    def shock(self, shock_id):
        if shock_id not in self._shocks:
            raise RuleLookupError(f"Unknown shock: {shock_id!r}")
        return deepcopy(self._shocks[shock_id])
