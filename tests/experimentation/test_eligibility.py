"""Tests for the eligibility filter."""
from experiment_engine.eligibility import is_eligible
from experiment_engine.schema import EligibilityCriteria, SubjectContext


def test_empty_criteria_admit_everyone():
    criteria = EligibilityCriteria()
    assert criteria.is_empty()
    assert is_eligible(criteria, SubjectContext("u1"))
    assert is_eligible(criteria, SubjectContext("u2", role="admin", age=99, phase=7))


def test_role_and_tenant_must_match():
    criteria = EligibilityCriteria(roles=["student"], tenant_ids=["t1"])
    assert is_eligible(criteria, SubjectContext("u", role="student", tenant_id="t1"))
    assert not is_eligible(criteria, SubjectContext("u", role="parent", tenant_id="t1"))
    assert not is_eligible(criteria, SubjectContext("u", role="student", tenant_id="t2"))
    assert not is_eligible(criteria, SubjectContext("u"))


def test_age_range():
    criteria = EligibilityCriteria(min_age=13, max_age=18)
    assert is_eligible(criteria, SubjectContext("u", age=13))
    assert is_eligible(criteria, SubjectContext("u", age=18))
    assert not is_eligible(criteria, SubjectContext("u", age=12))
    assert not is_eligible(criteria, SubjectContext("u", age=19))


def test_missing_attributes_do_not_exclude():
    criteria = EligibilityCriteria(min_age=13, phases=[1, 2], cohorts=["spring"])
    assert is_eligible(criteria, SubjectContext("u"))
    assert not is_eligible(criteria, SubjectContext("u", phase=3))
    assert not is_eligible(criteria, SubjectContext("u", cohort="fall"))


def test_excluded_experiments():
    criteria = EligibilityCriteria(exclude_experiments=["exp_pricing"])
    assert is_eligible(criteria, SubjectContext("u", active_experiments=["exp_other"]))
    assert not is_eligible(
        criteria, SubjectContext("u", active_experiments=["exp_other", "exp_pricing"])
    )
