"""
Policy votes and campaigns.

A policy passes a vote with probability

    b = clamp01(base + bonus[tag])
    p = clamp01(b − 0.01 × b × (R − support))

where R is the product of the policy's support requirements. Campaigns
raise bonus[tag] once they have run for their full length.
"""

import logging

from swissgrid.grid.resources import clamp01
from swissgrid.grid.types import ResourceType

logger = logging.getLogger(__name__)

ENV_TAG = "env"
DEMAND_TAG = "demand"


def new_policy_state():
    return {
        "bonuses": {ENV_TAG: 0.0, DEMAND_TAG: 0.0},
        # [tag, magnitude, turns_remaining]
        "campaigns": [],
        "voted": [],
    }


def reset(policy_state):
    policy_state.clear()
    policy_state.update(new_policy_state())


# ── Requirements ─────────────────────────────────────────────────────

def requirement_value(field, snapshot):
    """The snapshot value a policy requirement is compared against."""
    field = ResourceType.from_string(field)
    if field is ResourceType.SUPPORT:
        return snapshot["support"]
    if field is ResourceType.ENERGY_W:
        return snapshot["energy"]["supply_winter"]
    if field is ResourceType.ENERGY_S:
        return snapshot["energy"]["supply_summer"]
    if field is ResourceType.ENVIRONMENT:
        return snapshot["environment"]["bar"]
    if field is ResourceType.MONEY:
        return snapshot["money"]["money"]
    raise ValueError(f"{field.value} cannot be used as a policy requirement")


def check_requirements(requirements, snapshot):
    return all(requirement_value(r["field"], snapshot) >= r["value"] for r in requirements)


def support_product(requirements):
    product = 1.0
    for r in requirements:
        if ResourceType.from_string(r["field"]) is ResourceType.SUPPORT:
            product *= r["value"]
    return product


def real_probability(policy, bonuses, support):
    b = clamp01(policy["probability"] + bonuses.get(policy["tag"], 0.0))
    r = support_product(policy["requirements"])
    return clamp01(b - 0.01 * b * (r - support))


# ── Votes ────────────────────────────────────────────────────────────

def request_policy(rules, policy_state, policy_id, snapshot, rng):
    """
    Put a policy to the vote.

    Returns (passed, effects, probability). Effects are only returned when
    the vote passed; applying them is up to the caller. Failing the
    requirements or an unknown tag fails the request without a vote; the
    probability is None then.
    """
    policy = rules.policy(policy_id)
    if policy_id in policy_state["voted"]:
        raise ValueError(f"Policy {policy_id} was already voted on this turn")

    if not check_requirements(policy["requirements"], snapshot):
        logger.info("Policy %s refused: requirements not met", policy_id)
        return False, [], None
    if policy["tag"] not in policy_state["bonuses"]:
        logger.warning("Policy %s has unknown tag %r", policy_id, policy["tag"])
        return False, [], None

    probability = real_probability(policy, policy_state["bonuses"], snapshot["support"])
    policy_state["voted"].append(policy_id)
    draw = rng.randint(0, 99)
    passed = draw <= probability * 100
    logger.info("Policy %s vote: draw=%d p=%.2f passed=%s", policy_id, draw, probability, passed)
    return passed, (policy["effects"] if passed else []), probability


# ── Campaigns ────────────────────────────────────────────────────────

def schedule_campaign(rules, policy_state, campaign_id):
    campaign = rules.campaign(campaign_id)
    if campaign["tag"] not in policy_state["bonuses"]:
        raise ValueError(f"Campaign {campaign_id} has unknown tag {campaign['tag']!r}")
    magnitude = campaign["effects"][0]["value"]
    policy_state["campaigns"].append([campaign["tag"], magnitude, campaign["length"]])
    return campaign


def advance_turn(policy_state):
    """
    Tick every campaign and fold those that finished into the bonuses.
    Also reopens voting for the new turn. Returns the folded campaigns.
    """
    remaining = []
    folded = []
    for tag, magnitude, turns in policy_state["campaigns"]:
        turns -= 1
        if turns <= 0:
            policy_state["bonuses"][tag] += magnitude
            folded.append([tag, magnitude, 0])
        else:
            remaining.append([tag, magnitude, turns])
    policy_state["campaigns"] = remaining
    policy_state["voted"] = []
    return folded
