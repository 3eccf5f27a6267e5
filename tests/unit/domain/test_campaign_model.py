"""Domain tests: recompute() derives counters; transitions are one-way."""

from datetime import datetime, timezone

import pytest

from iam_core.domain.exceptions import ConflictError, IamValidationError, NotFoundError
from iam_core.domain.models.campaign import (
    AccessReviewCampaign,
    CampaignItem,
    CampaignStatus,
    CampaignSubject,
    DecisionType,
    ItemDecision,
    PrivilegeLevel,
    RequestedChange,
    SubjectStatus,
    apply_item_decision,
    recompute,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _item(item_id, level=PrivilegeLevel.STANDARD):
    return CampaignItem(item_id=item_id, application="crm", role_name=f"role-{item_id}", privilege_level=level)


def _campaign(subjects):
    campaign = AccessReviewCampaign(
        campaign_id="c-1",
        tenant_id="tenant-a",
        name="Q1 review",
        system_name="CRM",
        created_by="mgr-a",
        created_at=NOW,
        subjects=subjects,
    )
    return recompute(campaign)


def _decide(campaign, item_id, decision_type, by="mgr-a", at=NOW, **kwargs):
    _, item = campaign.find_item(item_id)
    apply_item_decision(item, ItemDecision(decision_type, decided_by=by, decided_at=at, **kwargs))
    return recompute(campaign)


@pytest.fixture
def two_by_two():
    return _campaign(
        [
            CampaignSubject("s-1", "u-1", "Ann", "ann@a.test", items=[_item("i-1"), _item("i-2")]),
            CampaignSubject("s-2", "u-2", "Bob", "bob@a.test", items=[_item("i-3"), _item("i-4")]),
        ]
    )


def test_counters_follow_each_decision(two_by_two):
    assert (two_by_two.total_items, two_by_two.completed_items) == (4, 0)

    _decide(two_by_two, "i-1", DecisionType.KEEP)
    assert two_by_two.completed_items == 1
    assert two_by_two.subjects[0].status == SubjectStatus.PENDING

    _decide(two_by_two, "i-2", DecisionType.REMOVE)
    assert two_by_two.completed_items == 2
    assert two_by_two.completed_subjects == 1
    assert two_by_two.subjects[0].status == SubjectStatus.COMPLETED
    assert two_by_two.subjects[0].reviewed_by == "mgr-a"
    assert two_by_two.completion_percentage == 50


def test_changing_a_decision_does_not_double_count(two_by_two):
    _decide(two_by_two, "i-1", DecisionType.KEEP)
    _decide(two_by_two, "i-1", DecisionType.REMOVE)
    assert two_by_two.completed_items == 1


def test_counters_stay_in_bounds(two_by_two):
    for item_id in ("i-1", "i-2", "i-3", "i-4"):
        _decide(two_by_two, item_id, DecisionType.KEEP)
        assert 0 <= two_by_two.completed_items <= two_by_two.total_items
        assert 0 <= two_by_two.completed_subjects <= two_by_two.total_subjects
    assert two_by_two.completion_percentage == 100


def test_privileged_item_requires_second_level_even_when_kept():
    campaign = _campaign(
        [CampaignSubject("s-1", "u-1", "Ann", "ann@a.test", items=[_item("i-1", PrivilegeLevel.SUPER_ADMIN)])]
    )
    assert campaign.approvals.second_level_required
    _decide(campaign, "i-1", DecisionType.KEEP)
    assert campaign.approvals.second_level_required


def test_second_level_flag_never_clears():
    campaign = _campaign([])
    campaign.approvals.second_level_required = True
    assert recompute(campaign).approvals.second_level_required


def test_subject_without_items_counts_as_completed():
    campaign = _campaign([CampaignSubject("s-1", "u-1", "Ann", "ann@a.test")])
    assert campaign.completed_subjects == 1
    assert campaign.completion_percentage == 0


def test_percentage_rounds_half_up():
    subjects = [
        CampaignSubject("s-1", "u-1", "Ann", "ann@a.test", items=[_item(f"i-{n}") for n in range(8)])
    ]
    campaign = _campaign(subjects)
    for n in range(5):
        _decide(campaign, f"i-{n}", DecisionType.KEEP)
    # 5 / 8 = 62.5
    assert campaign.completion_percentage == 63


def test_pending_cannot_be_written(two_by_two):
    _, item = two_by_two.find_item("i-1")
    with pytest.raises(IamValidationError):
        apply_item_decision(item, ItemDecision(DecisionType.PENDING))


def test_change_requires_role_set(two_by_two):
    _, item = two_by_two.find_item("i-1")
    with pytest.raises(IamValidationError):
        apply_item_decision(item, ItemDecision(DecisionType.CHANGE, requested_change=RequestedChange()))


def test_unknown_item_is_not_found(two_by_two):
    with pytest.raises(NotFoundError):
        two_by_two.find_item("nope")


def test_transitions_move_forward_only(two_by_two):
    with pytest.raises(IamValidationError):
        two_by_two.transition_to(CampaignStatus.SUBMITTED)
    two_by_two.transition_to(CampaignStatus.IN_REVIEW)
    with pytest.raises(IamValidationError):
        two_by_two.transition_to(CampaignStatus.DRAFT)


@pytest.mark.parametrize("terminal", [CampaignStatus.COMPLETED, CampaignStatus.CLOSED])
def test_terminal_states_refuse_every_transition(two_by_two, terminal):
    two_by_two.status = terminal
    for target in CampaignStatus:
        with pytest.raises(ConflictError):
            two_by_two.transition_to(target)


def test_document_round_trip_rederives_counters(two_by_two):
    _decide(
        two_by_two,
        "i-1",
        DecisionType.CHANGE,
        comments="narrow it",
        requested_change=RequestedChange(role_ids=("r-1",)),
    )
    doc = two_by_two.to_dict()
    doc["completed_items"] = 99
    restored = AccessReviewCampaign.from_dict(doc)
    assert restored.completed_items == 1
    assert restored.find_item("i-1")[1].decision.requested_change.role_ids == ("r-1",)
    assert restored.find_item("i-1")[1].decision.decided_at == NOW
