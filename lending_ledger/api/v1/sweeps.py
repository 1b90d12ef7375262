"""POST /v1/sweeps/overdue - scheduled status reconciliation"""

from fastapi import APIRouter, Depends

from lending_ledger.api.dependencies import get_request_id, get_sweeper
from lending_ledger.api.errors import internal_error, to_http_exception
from lending_ledger.api.v1.schemas import StatusChangeItem, SweepResponse
from lending_ledger.domain.exceptions import LedgerError
from lending_ledger.services.sweeper import OverdueSweeper

router = APIRouter()


@router.post("/sweeps/overdue", response_model=SweepResponse)
def sweep_overdue(
    sweeper: OverdueSweeper = Depends(get_sweeper),
    request_id: str = Depends(get_request_id),
):
    """
    Apply the overdue rule to every client with a loan.

    Meant to be called by a scheduler (cron, Kubernetes CronJob) so statuses
    stay correct for clients nobody opened recently.
    """
    try:
        changes = sweeper.sweep_all()
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return SweepResponse(
        changed=[
            StatusChangeItem(client_id=client_id, from_status=before, to_status=after)
            for client_id, before, after in changes
        ]
    )
