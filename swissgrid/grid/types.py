"""
Closed enumerations shared across the grid engine.

Every enum maps to and from its wire form explicitly: state dicts only ever
hold the string values, and parsing an unknown string raises ValueError.
"""

from enum import Enum


class Season(Enum):
    WINTER = "winter"
    SUMMER = "summer"

    @classmethod
    def from_string(cls, s):
        if isinstance(s, cls):
            return s
        try:
            return cls(s.strip().lower())
        except (ValueError, AttributeError):
            raise ValueError(f"Unknown season: {s!r}")


class GameStatus(Enum):
    NOT_STARTED = "not_started"
    PLAYING = "playing"
    ENDED = "ended"


class SlotStatus(Enum):
    IDLE = "idle"
    BUILDING = "building"
    DONE = "done"


# ── Plant Types ──────────────────────────────────────────────────────

# Suffix used by the remote model's per-type columns (avl_<suffix>, cap_ele_<suffix>).
# Trees and NONE are never tracked remotely.
_MODEL_SUFFIX = {
    "gas": "gas",
    "hydro": "res",
    "solar": "sol",
    "wind": "win",
    "nuclear": "nuc",
    "waste": "wst",
    "biomass": "bio",
    "river": "riv",
    "pump": "pmp",
    "geothermal": "geo",
}


class PlantType(Enum):
    GAS = "gas"
    HYDRO = "hydro"
    SOLAR = "solar"
    WIND = "wind"
    NUCLEAR = "nuclear"
    TREE = "tree"
    WASTE = "waste"
    BIOMASS = "biomass"
    RIVER = "river"
    PUMP = "pump"
    GEOTHERMAL = "geothermal"
    NONE = "none"

    @classmethod
    def from_string(cls, s):
        if isinstance(s, cls):
            return s
        try:
            return cls(s.strip().lower())
        except (ValueError, AttributeError):
            raise ValueError(f"Unknown plant type: {s!r}")

    @classmethod
    def from_int(cls, i):
        members = list(cls)
        if not isinstance(i, int) or i < 0 or i >= len(members):
            raise ValueError(f"Unknown plant type index: {i!r}")
        return members[i]

    def to_int(self):
        return list(PlantType).index(self)

    @property
    def model_suffix(self):
        """Column suffix in the remote model, or None if the type is not tracked."""
        return _MODEL_SUFFIX.get(self.value)

    @classmethod
    def from_model_suffix(cls, suffix):
        for value, sfx in _MODEL_SUFFIX.items():
            if sfx == suffix:
                return cls(value)
        raise ValueError(f"Unknown model suffix: {suffix!r}")


# ── Resource Types ───────────────────────────────────────────────────

class ResourceType(Enum):
    """Field tags used by requirements and effects in the rule catalog."""
    ENERGY_W = "energy_w"
    ENERGY_S = "energy_s"
    ENVIRONMENT = "environment"
    SUPPORT = "support"
    MONEY = "money"
    MULT_WIND = "mult_wind"
    MULT_SOLAR = "mult_solar"
    BUILD_TIME_WIND = "build_time_wind"
    BUILD_TIME_SOLAR = "build_time_solar"

    @classmethod
    def from_string(cls, s):
        if isinstance(s, cls):
            return s
        try:
            return cls(s.strip().lower())
        except (ValueError, AttributeError):
            raise ValueError(f"Unknown resource type: {s!r}")


# ── Remote Model ─────────────────────────────────────────────────────

class CoherencyState(Enum):
    """
    MSI-style coherency of the local copy of the remote model.

    MODIFIED = client data is more recent than server data
    SHARED   = client and server agree
    INVALID  = client data is unusable
    """
    MODIFIED = "modified"
    SHARED = "shared"
    INVALID = "invalid"


class ModelColumn(Enum):
    CAP = "cap_ele"
    AVL = "avl"
    DEM = "dem"

    @property
    def base_id(self):
        return {"cap_ele": 29, "avl": 1, "dem": 231}[self.value]

    @classmethod
    def from_string(cls, s):
        aliases = {
            "cap_ele": cls.CAP, "cap": cls.CAP, "capacity": cls.CAP,
            "avl": cls.AVL, "availability": cls.AVL,
            "dem": cls.DEM, "dem_base": cls.DEM, "demand": cls.DEM,
        }
        if isinstance(s, cls):
            return s
        key = s.strip().lower() if isinstance(s, str) else s
        if key not in aliases:
            raise ValueError(f"Unknown model column: {s!r}")
        return aliases[key]

    def wire_name(self, plant_type=None):
        """cap_ele_gas, avl_sol, dem_base."""
        if self is ModelColumn.DEM:
            return "dem_base"
        suffix = plant_type.model_suffix if plant_type is not None else None
        if suffix is None:
            raise ValueError(f"{plant_type} has no {self.value} column in the model")
        return f"{self.value}_{suffix}"

    def wire_id(self, plant_type=None):
        if self is ModelColumn.DEM:
            return self.base_id
        if plant_type is None or plant_type.model_suffix is None:
            raise ValueError(f"{plant_type} has no {self.value} column in the model")
        return self.base_id + plant_type.to_int()

    @classmethod
    def from_wire_name(cls, name):
        """Inverse of wire_name: returns (column, plant_type or None)."""
        if name == "dem_base":
            return cls.DEM, None
        for column in (cls.CAP, cls.AVL):
            prefix = column.value + "_"
            if name.startswith(prefix):
                return column, PlantType.from_model_suffix(name[len(prefix):])
        raise ValueError(f"Unknown model column name: {name!r}")

    @classmethod
    def from_wire_id(cls, i):
        """Inverse of wire_id: returns (column, plant_type or None)."""
        if i == cls.DEM.base_id:
            return cls.DEM, None
        for column in (cls.CAP, cls.AVL):
            offset = i - column.base_id
            if 0 <= offset < len(PlantType):
                plant_type = PlantType.from_int(offset)
                if plant_type.model_suffix is not None:
                    return column, plant_type
        raise ValueError(f"Unknown model column id: {i!r}")
