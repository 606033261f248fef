"""
Hard-constraint filtering of candidate recommendations.

Each constraint type maps to a rule `(recommendation, constraint) -> bool`.
Budget is enforced; frequency, inventory and compliance are registered
pass-through rules that hosts replace with real checks via
register_constraint_rule().
"""

import logging
from typing import Callable, Dict, List, Sequence

from .schema import Constraint, ConstraintType, Recommendation

logger = logging.getLogger(__name__)

ConstraintRule = Callable[[Recommendation, Constraint], bool]


def budget_rule(rec: Recommendation, constraint: Constraint) -> bool:
    """Keep recommendations whose expected value fits the budget ceiling."""
    if constraint.value is None:
        return True
    return rec.expected_value <= float(constraint.value)


def _pass_through(name: str) -> ConstraintRule:
    def rule(rec: Recommendation, constraint: Constraint) -> bool:
        logger.debug(f"{name} constraint has no rule installed; keeping {rec.id}")
        return True
    rule.__name__ = f"{name}_rule"
    return rule


def _default_rules() -> Dict[str, ConstraintRule]:
    return {
        ConstraintType.BUDGET.value: budget_rule,
        ConstraintType.FREQUENCY.value: _pass_through("frequency"),
        ConstraintType.INVENTORY.value: _pass_through("inventory"),
        ConstraintType.COMPLIANCE.value: _pass_through("compliance"),
    }


_RULES: Dict[str, ConstraintRule] = _default_rules()


def _key(constraint_type) -> str:
    return constraint_type.value if isinstance(constraint_type, ConstraintType) else str(constraint_type)


def register_constraint_rule(constraint_type, rule: ConstraintRule) -> None:
    """Install or replace the rule for a constraint type."""
    _RULES[_key(constraint_type)] = rule


def get_constraint_rule(constraint_type) -> ConstraintRule:
    return _RULES.get(_key(constraint_type), _pass_through(_key(constraint_type)))


def reset_constraint_rules() -> None:
    """Restore the default rule set."""
    _RULES.clear()
    _RULES.update(_default_rules())


def apply_constraints(
    recommendations: Sequence[Recommendation],
    constraints: Sequence[Constraint],
) -> List[Recommendation]:
    """
    Drop candidates that violate any constraint.

    Args:
        recommendations: Candidates in generation order
        constraints: Caller-supplied constraints (may be empty)

    Returns:
        Surviving candidates, order preserved
    """
    if not constraints:
        return list(recommendations)

    kept = []
    for rec in recommendations:
        if all(get_constraint_rule(c.type)(rec, c) for c in constraints):
            kept.append(rec)
        else:
            logger.info(f"Constraint filter dropped {rec.id}")
    return kept
