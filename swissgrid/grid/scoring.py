"""
End-game score.

Computed once when the last turn ends, from the final resource snapshot.
"""


def net_zero(environment):
    """Own plus imported pollution offset to zero or below (forests count negative)."""
    return environment["total_pollution"] <= 0


def import_percentage(imported, supply):
    if supply <= 0:
        return 0.0
    return imported / supply * 100


def compute_final_score(state, snapshot):
    energy = snapshot["energy"]
    environment = snapshot["environment"]
    money = snapshot["money"]
    return {
        "shocks_survived": state["shock"]["survived"],
        "supply_winter": energy["supply_winter"],
        "supply_summer": energy["supply_summer"],
        "in_debt": money["money"] < 0,
        "ever_in_debt": money["ever_in_debt"],
        "support": snapshot["support"],
        "net_zero": net_zero(environment),
        "environment_pct": environment["bar"] * 100,
        "import_pct": import_percentage(energy["imported_total"], energy["supply_winter"]),
        "borrowed": money["borrowed"],
    }
