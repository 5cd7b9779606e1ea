"""Tool: ``insuranceInfo``."""

from __future__ import annotations

from dental_booking.models import InsuranceStatus, LastAction
from dental_booking.scheduling.insurance import check_insurance
from dental_booking.scheduling.speech import join_spoken
from dental_booking.tools.base import ToolArgs, ToolContext, ToolOutcome
from dental_booking.tools.registry import register_tool


class InsuranceInfoArgs(ToolArgs):
    insurance_name: str | None = None


@register_tool("insuranceInfo", InsuranceInfoArgs)
def insurance_info(ctx: ToolContext, args: InsuranceInfoArgs) -> ToolOutcome:
    accepted = ctx.practice.accepted_insurances

    if not args.insurance_name:
        if not accepted:
            return ToolOutcome(
                message="The front desk can go over insurance with you. Which provider do you have?",
            )
        return ToolOutcome(
            message=(
                f"We're in network with {join_spoken(list(accepted), 'and')}. "
                "Which insurance do you have?"
            ),
        )

    status, carrier = check_insurance(accepted, args.insurance_name)
    delta = {
        "last_action": LastAction.CHECKED_INSURANCE,
        "insurance": {"status": status, "queried_plan": args.insurance_name},
    }
    if status is InsuranceStatus.IN_NETWORK:
        message = f"Good news, we're in network with {carrier}."
    elif status is InsuranceStatus.OUT_OF_NETWORK:
        message = (
            f"It looks like we're not in network with {args.insurance_name}, "
            "but you're still welcome to book. The office can go over "
            "out-of-network costs with you."
        )
    else:
        message = (
            f"I've noted {args.insurance_name}. The front desk will confirm "
            "your coverage before your visit."
        )
    return ToolOutcome(message=message, delta=delta)
