"""Tests for the workflow dry-run."""

import pytest
from pydantic import ValidationError

from podflow_admin.core.types import WorkflowSettings
from podflow_admin.core.workflow import SimulationRequest, simulate_transition


def _types(result):
    return [effect.type for effect in result.effects]


def test_single_stage():
    result = simulate_transition(
        WorkflowSettings(), SimulationRequest(campaign_id="c1", target_stage=10)
    )

    assert result.automation_enabled is True
    assert result.dry_run is True
    assert _types(result) == ["STAGE_ACTIVATED"]


def test_full_pipeline_in_stage_order():
    result = simulate_transition(
        WorkflowSettings(), SimulationRequest(campaign_id="c1", target_stage=100)
    )

    assert [effect.stage for effect in result.effects] == sorted(
        effect.stage for effect in result.effects
    )
    assert _types(result) == [
        "STAGE_ACTIVATED",
        "RATE_CARD_TRACKING",
        "SCHEDULE_VALIDATED",
        "TALENT_APPROVAL_REQUESTED",
        "INVENTORY_RESERVED",
        "PENDING_APPROVAL",
        "ORDER_CREATED",
        "AD_REQUESTS_CREATED",
        "CONTRACT_GENERATED",
        "BILLING_SCHEDULE_CREATED",
    ]


def test_stages_already_passed_are_skipped():
    result = simulate_transition(
        WorkflowSettings(),
        SimulationRequest(campaign_id="c1", current_stage=65, target_stage=90),
    )

    assert {effect.stage for effect in result.effects} == {90}


def test_disabled_automation_has_no_effects():
    result = simulate_transition(
        WorkflowSettings(enabled=False), SimulationRequest(campaign_id="c1", target_stage=100)
    )

    assert result.automation_enabled is False
    assert result.effects == []


def test_stage_switch_off():
    settings = WorkflowSettings(auto_stages={"at35": False})
    result = simulate_transition(settings, SimulationRequest(campaign_id="c1", target_stage=35))

    assert _types(result) == ["STAGE_ACTIVATED"]


@pytest.mark.parametrize("policy,outcome", [("BLOCK", "blocked"), ("WARN", "warning")])
def test_category_exclusivity(policy, outcome):
    settings = WorkflowSettings(
        exclusivity={"policy": policy, "categories": ["mattresses", "meal kits"]}
    )
    result = simulate_transition(
        settings, SimulationRequest(campaign_id="c1", current_stage=35, target_stage=65)
    )

    check = [e for e in result.effects if e.type == "CATEGORY_EXCLUSIVITY_CHECK"][0]
    assert check.description == f"Category exclusivity {outcome}"
    assert check.data["categories"] == ["mattresses", "meal kits"]


def test_no_talent_approval_when_both_off():
    settings = WorkflowSettings(talent_approvals={"host_read": False, "endorsed": False})
    result = simulate_transition(
        settings, SimulationRequest(campaign_id="c1", current_stage=35, target_stage=65)
    )

    assert result.effects == []


def test_settings_flow_into_effect_data():
    settings = WorkflowSettings(
        inventory={"reserve_at_90": True, "reservation_ttl_hours": 48},
        contracts={"auto_generate": False},
        billing={"invoice_day_of_month": 5, "timezone": "America/New_York"},
    )
    result = simulate_transition(
        settings, SimulationRequest(campaign_id="c1", current_stage=65, target_stage=100)
    )
    effects = {effect.type: effect for effect in result.effects}

    assert effects["INVENTORY_RESERVED"].data == {"ttl_hours": 48}
    assert "CONTRACT_GENERATED" not in effects
    billing = effects["BILLING_SCHEDULE_CREATED"]
    assert billing.data["day_of_month"] == 5
    assert billing.data["timezone"] == "America/New_York"
    assert billing.description == "Monthly billing schedule created (day 5)"


def test_target_stage_must_be_a_workflow_stage():
    with pytest.raises(ValidationError):
        SimulationRequest(campaign_id="c1", target_stage=50)
