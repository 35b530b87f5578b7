"""
Eligibility filter for experiment targeting.

Every criterion is independent and optional: an omitted criterion places no
constraint, so an experiment without criteria admits every subject.
"""

from .schema import EligibilityCriteria, SubjectContext


def is_eligible(criteria: EligibilityCriteria, context: SubjectContext) -> bool:
    """
    Check a subject against an experiment's targeting rules.

    Role and tenant must match when constrained. Age, phase and cohort only
    exclude a subject whose context carries the attribute, since a missing
    attribute cannot be checked.

    Args:
        criteria: Experiment eligibility criteria
        context: Subject attributes

    Returns:
        True if the subject may enter the experiment
    """
    if criteria.roles is not None and context.role not in criteria.roles:
        return False
    if criteria.tenant_ids is not None and context.tenant_id not in criteria.tenant_ids:
        return False
    if context.age is not None:
        if criteria.min_age is not None and context.age < criteria.min_age:
            return False
        if criteria.max_age is not None and context.age > criteria.max_age:
            return False
    if criteria.phases is not None and context.phase is not None:
        if context.phase not in criteria.phases:
            return False
    if criteria.cohorts is not None and context.cohort is not None:
        if context.cohort not in criteria.cohorts:
            return False
    if criteria.exclude_experiments:
        if set(criteria.exclude_experiments) & set(context.active_experiments):
            return False
    return True
