"""
Default game content for SwissGrid.

Plant configurations and their upgrade multipliers, the policies that can
be put to a vote, the campaigns that raise a policy tag's odds, and the
shock events drawn between turns. Requirement and effect fields are
ResourceType values; see swissgrid.grid.rules for how they are read.
"""

# ── Plants ───────────────────────────────────────────────────────────
#
# availability is the fraction of capacity delivered in each season.
# Multipliers scale a plant per upgrade level: capacity grows by a fixed
# increment, the other values by a factor.

PLANTS = {
    "gas": {
        "name": "Gas plant",
        "build_cost": 300, "build_time": 0,
        "production_cost": 40, "capacity": 40,
        "availability": {"winter": 1.0, "summer": 1.0},
        "pollution": 30, "land_use": 0.02, "biodiversity": 0.02,
        "multiplier": {"max_elements": 3, "cost": 150, "capacity": 20,
                       "production_cost": 1.2, "pollution": 1.5,
                       "land_use": 1.1, "biodiversity": 1.1},
    },
    "nuclear": {
        "name": "Nuclear plant",
        "build_cost": 2000, "build_time": 4,
        "production_cost": 60, "capacity": 70,
        "availability": {"winter": 1.0, "summer": 0.9},
        "pollution": 5, "land_use": 0.01, "biodiversity": 0.01,
        "multiplier": {"max_elements": 1, "cost": 0, "capacity": 0,
                       "production_cost": 1.0, "pollution": 1.0,
                       "land_use": 1.0, "biodiversity": 1.0},
    },
    "hydro": {
        "name": "Hydro dam",
        "build_cost": 600, "build_time": 2,
        "production_cost": 10, "capacity": 35,
        "availability": {"winter": 0.5, "summer": 0.9},
        "pollution": 1, "land_use": 0.08, "biodiversity": 0.06,
        "multiplier": {"max_elements": 2, "cost": 300, "capacity": 15,
                       "production_cost": 1.1, "pollution": 1.0,
                       "land_use": 1.5, "biodiversity": 1.5},
    },
    "river": {
        "name": "Run-of-river plant",
        "build_cost": 400, "build_time": 1,
        "production_cost": 5, "capacity": 30,
        "availability": {"winter": 0.6, "summer": 1.0},
        "pollution": 0, "land_use": 0.03, "biodiversity": 0.03,
        "multiplier": {"max_elements": 2, "cost": 200, "capacity": 10,
                       "production_cost": 1.1, "pollution": 1.0,
                       "land_use": 1.2, "biodiversity": 1.2},
    },
    "solar": {
        "name": "Solar panels",
        "build_cost": 200, "build_time": 0,
        "production_cost": 5, "capacity": 20,
        "availability": {"winter": 0.2, "summer": 0.8},
        "pollution": 0, "land_use": 0.05, "biodiversity": 0.02,
        "multiplier": {"max_elements": 3, "cost": 100, "capacity": 10,
                       "production_cost": 1.1, "pollution": 1.0,
                       "land_use": 1.5, "biodiversity": 1.3},
    },
    "wind": {
        "name": "Wind turbines",
        "build_cost": 250, "build_time": 1,
        "production_cost": 8, "capacity": 25,
        "availability": {"winter": 0.7, "summer": 0.4},
        "pollution": 0, "land_use": 0.04, "biodiversity": 0.03,
        "multiplier": {"max_elements": 3, "cost": 120, "capacity": 12,
                       "production_cost": 1.1, "pollution": 1.0,
                       "land_use": 1.3, "biodiversity": 1.4},
    },
    "tree": {
        "name": "Forest",
        "build_cost": 50, "build_time": 0,
        "production_cost": 2, "capacity": 0,
        "availability": {"winter": 0.0, "summer": 0.0},
        "pollution": -10, "land_use": 0.02, "biodiversity": -0.05,
        "multiplier": {"max_elements": 4, "cost": 30, "capacity": 0,
                       "production_cost": 1.0, "pollution": 1.5,
                       "land_use": 1.2, "biodiversity": 1.2},
    },
    "waste": {
        "name": "Waste incinerator",
        "build_cost": 350, "build_time": 1,
        "production_cost": 15, "capacity": 15,
        "availability": {"winter": 0.9, "summer": 0.9},
        "pollution": 15, "land_use": 0.01, "biodiversity": 0.01,
        "multiplier": {"max_elements": 2, "cost": 150, "capacity": 8,
                       "production_cost": 1.2, "pollution": 1.4,
                       "land_use": 1.1, "biodiversity": 1.1},
    },
    "biomass": {
        "name": "Biomass plant",
        "build_cost": 300, "build_time": 1,
        "production_cost": 12, "capacity": 15,
        "availability": {"winter": 0.9, "summer": 0.8},
        "pollution": 8, "land_use": 0.04, "biodiversity": 0.03,
        "multiplier": {"max_elements": 2, "cost": 150, "capacity": 8,
                       "production_cost": 1.2, "pollution": 1.3,
                       "land_use": 1.2, "biodiversity": 1.2},
    },
    "pump": {
        "name": "Pumped storage",
        "build_cost": 700, "build_time": 2,
        "production_cost": 10, "capacity": 20,
        "availability": {"winter": 0.3, "summer": 0.3},
        "pollution": 0, "land_use": 0.05, "biodiversity": 0.04,
        "multiplier": {"max_elements": 2, "cost": 350, "capacity": 10,
                       "production_cost": 1.1, "pollution": 1.0,
                       "land_use": 1.3, "biodiversity": 1.3},
    },
    "geothermal": {
        "name": "Geothermal plant",
        "build_cost": 800, "build_time": 2,
        "production_cost": 20, "capacity": 10,
        "availability": {"winter": 0.95, "summer": 0.95},
        "pollution": 1, "land_use": 0.01, "biodiversity": 0.01,
        "multiplier": {"max_elements": 2, "cost": 400, "capacity": 5,
                       "production_cost": 1.1, "pollution": 1.0,
                       "land_use": 1.1, "biodiversity": 1.1},
    },
}

# Plants present when a session starts (not tied to a build slot)
STARTING_PLANTS = ("nuclear", "gas", "river")

# Build slot layout: the first slots sit on rivers and also accept dams
SLOT_TYPES = ("gas", "solar", "tree", "wind")
NUM_SLOTS = 8
HYDRO_SLOTS = (0, 1)


# ── Policies ─────────────────────────────────────────────────────────

POLICY_TAGS = ("env", "demand")

POLICIES = {
    "wind_buildtime": {
        "name": "Faster wind permits",
        "text": "Shorten the approval process for new wind parks.",
        "tag": "env", "probability": 0.6,
        "requirements": [{"field": "support", "value": 40}],
        "effects": [{"field": "build_time_wind", "value": -1}],
    },
    "upgrade_wind": {
        "name": "Larger wind parks",
        "text": "Allow more turbines per wind park.",
        "tag": "env", "probability": 0.5,
        "requirements": [{"field": "support", "value": 50}],
        "effects": [{"field": "mult_wind", "value": 1}],
    },
    "upgrade_pv": {
        "name": "Solar roofs",
        "text": "Allow larger photovoltaic installations.",
        "tag": "env", "probability": 0.55,
        "requirements": [{"field": "support", "value": 50}],
        "effects": [{"field": "mult_solar", "value": 1}],
    },
    "home_regulation": {
        "name": "Home insulation rules",
        "text": "Impose energy standards on residential buildings.",
        "tag": "demand", "probability": 0.45,
        "requirements": [{"field": "support", "value": 55}],
        "effects": [{"field": "energy_w", "value": -8},
                    {"field": "energy_s", "value": -5},
                    {"field": "support", "value": -5}],
    },
    "industry_subsidy": {
        "name": "Industry efficiency subsidy",
        "text": "Subsidise efficient machinery in industry.",
        "tag": "demand", "probability": 0.5,
        "requirements": [{"field": "money", "value": 300},
                         {"field": "support", "value": 45}],
        "effects": [{"field": "money", "value": -300},
                    {"field": "energy_w", "value": -12},
                    {"field": "energy_s", "value": -8}],
    },
}

CAMPAIGNS = {
    "env_campaign": {
        "name": "Environmental campaign",
        "text": "Promote renewable energy to raise support for green policies.",
        "tag": "env", "cost": 100, "length": 2,
        "effects": [{"field": "support", "value": 0.1}],
    },
    "demand_campaign": {
        "name": "Energy saving campaign",
        "text": "Encourage households to save energy.",
        "tag": "demand", "cost": 100, "length": 3,
        "effects": [{"field": "support", "value": 0.15}],
    },
}


# ── Shocks ───────────────────────────────────────────────────────────

FORCED_SHOCK = "nuc_reintro"
WEATHER_SHOCK = "severe_weather"

SHOCKS = {
    "cold_spell": {
        "name": "Cold spell",
        "text": "A long cold spell drives up winter consumption.",
        "requirements": [{"field": "energy_w", "value": 0}],
        "reward": {"text": "The grid held up through the cold.",
                   "effects": [{"field": "support", "value": 5}]},
        "reactions": [
            {"text": "Buy emergency power abroad",
             "effects": [{"field": "money", "value": -200}]},
            {"text": "Call for energy savings",
             "effects": [{"field": "support", "value": -10}]},
        ],
    },
    "heat_wave": {
        "name": "Heat wave",
        "text": "Air conditioning pushes summer demand to a record.",
        "requirements": [{"field": "energy_s", "value": 0}],
        "reward": {"text": "Supply kept up with the heat.",
                   "effects": [{"field": "support", "value": 5}]},
        "reactions": [
            {"text": "Buy emergency power abroad",
             "effects": [{"field": "money", "value": -150}]},
            {"text": "Ration electricity",
             "effects": [{"field": "support", "value": -8}]},
        ],
    },
    "glaciers_melting": {
        "name": "Glaciers melting",
        "text": "Record temperatures shrink the glaciers.",
        "requirements": [{"field": "environment", "value": 0.5}],
        "reward": {"text": "Your climate efforts are recognised.",
                   "effects": [{"field": "support", "value": 3}]},
        "reactions": [
            {"text": "Fund glacier protection",
             "effects": [{"field": "money", "value": -250}]},
            {"text": "Do nothing",
             "effects": [{"field": "support", "value": -10},
                         {"field": "environment", "value": -0.05}]},
        ],
    },
    "severe_weather": {
        "name": "Severe weather",
        "text": "Storms and fog cut wind and solar output.",
        "requirements": [{"field": "energy_w", "value": 10}],
        "reward": {"text": "Your reserves covered the bad weather.",
                   "effects": [{"field": "support", "value": 2}]},
        "reactions": [
            {"text": "Buy backup power",
             "effects": [{"field": "money", "value": -200}]},
            {"text": "Accept blackouts",
             "effects": [{"field": "support", "value": -5}]},
        ],
    },
    "renewables_support": {
        "name": "Renewables referendum",
        "text": "Voters ask for a faster energy transition.",
        "requirements": [{"field": "environment", "value": 0.4}],
        "reward": {"text": "Voters reward your green grid.",
                   "effects": [{"field": "money", "value": 200},
                               {"field": "support", "value": 5}]},
        "reactions": [
            {"text": "Promise more renewables",
             "effects": [{"field": "support", "value": -5}]},
        ],
    },
    "inc_raw_cost_10": {
        "name": "Raw material prices +10%",
        "text": "Fuel and material prices rise by ten percent.",
        "requirements": [{"field": "money", "value": 300}],
        "reward": {"text": "Your reserves absorb the increase.",
                   "effects": []},
        "reactions": [
            {"text": "Pay the difference",
             "effects": [{"field": "money", "value": -100}]},
            {"text": "Pass the cost to consumers",
             "effects": [{"field": "support", "value": -5}]},
        ],
    },
    "inc_raw_cost_20": {
        "name": "Raw material prices +20%",
        "text": "Fuel and material prices rise by twenty percent.",
        "requirements": [{"field": "money", "value": 500}],
        "reward": {"text": "Your reserves absorb the increase.",
                   "effects": []},
        "reactions": [
            {"text": "Pay the difference",
             "effects": [{"field": "money", "value": -200}]},
            {"text": "Pass the cost to consumers",
             "effects": [{"field": "support", "value": -10}]},
        ],
    },
    "dec_raw_cost_20": {
        "name": "Raw material prices -20%",
        "text": "Fuel and material prices drop by twenty percent.",
        "requirements": [],
        "reward": {"text": "The savings go to your budget.",
                   "effects": [{"field": "money", "value": 200}]},
        "reactions": [],
    },
    "mass_immigration": {
        "name": "Population growth",
        "text": "A wave of newcomers raises consumption all year.",
        "requirements": [{"field": "energy_w", "value": 15},
                         {"field": "energy_s", "value": 15}],
        "reward": {"text": "The grid welcomes the newcomers.",
                   "effects": [{"field": "support", "value": 5}]},
        "reactions": [
            {"text": "Accept the higher demand",
             "effects": [{"field": "energy_w", "value": 10},
                         {"field": "energy_s", "value": 8}]},
            {"text": "Fund efficiency programs",
             "effects": [{"field": "money", "value": -300}]},
        ],
    },
    "nuc_reintro": {
        "name": "Nuclear reintroduction",
        "text": "Parliament debates extending the nuclear plants.",
        "requirements": [],
        "reward": {"text": "", "effects": []},
        "reactions": [
            {"text": "Extend the nuclear plants",
             "effects": [{"field": "support", "value": -10}]},
            {"text": "Keep the phase-out",
             "effects": [{"field": "support", "value": 5}]},
        ],
    },
}
