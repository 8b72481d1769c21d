"""Dry-run of the campaign stage automation."""

from typing import Any, Literal

from pydantic import BaseModel, Field

from .types import WorkflowSettings

WORKFLOW_STAGES = (10, 35, 65, 90, 100)

Stage = Literal[10, 35, 65, 90, 100]


class StageEffect(BaseModel):
    """One action the automation would take."""

    stage: int
    type: str
    description: str
    data: dict[str, Any] = Field(default_factory=dict)


class SimulationRequest(BaseModel):
    campaign_id: str = Field(min_length=1)
    target_stage: Stage
    current_stage: int = Field(default=0, ge=0, le=100)
    dry_run: bool = True


class SimulationResult(BaseModel):
    campaign_id: str
    target_stage: int
    automation_enabled: bool
    dry_run: bool = True
    effects: list[StageEffect] = Field(default_factory=list)


def _stage_effects(stage: int, settings: WorkflowSettings) -> list[StageEffect]:
    effects: list[StageEffect] = []

    if stage == 10:
        effects.append(
            StageEffect(
                stage=10,
                type="STAGE_ACTIVATED",
                description="Campaign marked as active pre-sale",
            )
        )

    elif stage == 35:
        threshold = settings.rate_card.delta_approval_threshold_pct
        effects.append(
            StageEffect(
                stage=35,
                type="RATE_CARD_TRACKING",
                description="Rate card delta tracking initiated",
                data={"approval_threshold_pct": threshold},
            )
        )
        effects.append(
            StageEffect(
                stage=35,
                type="SCHEDULE_VALIDATED",
                description="Schedule validation requested",
            )
        )

    elif stage == 65:
        approvals = settings.talent_approvals
        if approvals.host_read or approvals.endorsed:
            effects.append(
                StageEffect(
                    stage=65,
                    type="TALENT_APPROVAL_REQUESTED",
                    description="Talent/Producer approval request created",
                    data={"host_read": approvals.host_read, "endorsed": approvals.endorsed},
                )
            )
        if settings.exclusivity.categories:
            policy = settings.exclusivity.policy.value
            outcome = "blocked" if policy == "BLOCK" else "warning"
            effects.append(
                StageEffect(
                    stage=65,
                    type="CATEGORY_EXCLUSIVITY_CHECK",
                    description=f"Category exclusivity {outcome}",
                    data={"policy": policy, "categories": settings.exclusivity.categories},
                )
            )

    elif stage == 90:
        if settings.inventory.reserve_at_90:
            ttl = settings.inventory.reservation_ttl_hours
            effects.append(
                StageEffect(
                    stage=90,
                    type="INVENTORY_RESERVED",
                    description=f"Inventory reserved with {ttl} hour TTL",
                    data={"ttl_hours": ttl},
                )
            )
        effects.append(
            StageEffect(
                stage=90,
                type="PENDING_APPROVAL",
                description="Campaign moved to reservations pending approval",
            )
        )

    elif stage == 100:
        effects.append(
            StageEffect(
                stage=100,
                type="ORDER_CREATED",
                description="Campaign copied to Post-Sale (Order)",
            )
        )
        effects.append(
            StageEffect(
                stage=100,
                type="AD_REQUESTS_CREATED",
                description="Ad requests created for shows/talent",
            )
        )
        if settings.contracts.auto_generate:
            template = settings.contracts.email_template_id
            effects.append(
                StageEffect(
                    stage=100,
                    type="CONTRACT_GENERATED",
                    description=f"Contract generated using template: {template}",
                    data={"template_id": template},
                )
            )
        billing = settings.billing
        effects.append(
            StageEffect(
                stage=100,
                type="BILLING_SCHEDULE_CREATED",
                description=(
                    f"Monthly billing schedule created (day {billing.invoice_day_of_month})"
                ),
                data={
                    "day_of_month": billing.invoice_day_of_month,
                    "timezone": billing.timezone,
                    "prebill_enabled": billing.prebill_when_no_terms,
                },
            )
        )

    return effects


def simulate_transition(settings: WorkflowSettings, request: SimulationRequest) -> SimulationResult:
    """
    List what moving a campaign to ``target_stage`` would trigger.

    Stages between ``current_stage`` (exclusive) and ``target_stage``
    (inclusive) fire in order, each only when its ``auto_stages`` switch is on.
    """
    result = SimulationResult(
        campaign_id=request.campaign_id,
        target_stage=request.target_stage,
        automation_enabled=settings.enabled,
        dry_run=request.dry_run,
    )
    if not settings.enabled:
        return result

    for stage in WORKFLOW_STAGES:
        if stage > request.target_stage or stage <= request.current_stage:
            continue
        if not getattr(settings.auto_stages, f"at{stage}"):
            continue
        result.effects.extend(_stage_effects(stage, settings))

    return result
