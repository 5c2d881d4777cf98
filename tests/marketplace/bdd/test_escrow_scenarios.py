"""BDD tests for escrow holds, releases and disputes."""

from datetime import UTC, datetime, timedelta

from marketplace.payment import orchestrator
from protean.exceptions import ValidationError
from pytest_bdd import parsers, scenarios, when

scenarios("features/escrow.feature")


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when("the buyer confirms delivery")
def _(payment_id):
    orchestrator.confirm_delivery(payment_id)


@when("the buyer tries to confirm delivery")
def _(payment_id, outcome):
    try:
        orchestrator.confirm_delivery(payment_id)
    except ValidationError as exc:
        outcome["exc"] = exc


@when(parsers.cfparse("the escrow sweep runs {days:d} days from now"))
def _(days):
    orchestrator.release_due_escrows(now=datetime.now(UTC) + timedelta(days=days))


@when(parsers.cfparse('an admin disputes the escrow because "{reason}"'))
def _(payment_id, reason):
    orchestrator.dispute_escrow(payment_id, reason)


@when(parsers.cfparse('an admin refunds {amount:d} UGX because "{reason}"'))
def _(payment_id, amount, reason):
    orchestrator.process_refund(payment_id, amount, reason)
