"""PIN confirmation flow for mutating operations"""

from enum import Enum
from typing import Callable, TypeVar

from lending_ledger.domain.exceptions import AuthFailed, InvalidFlowTransition

T = TypeVar("T")


class FlowState(str, Enum):
    IDLE = "Idle"
    FORM_VALID = "FormValid"
    AWAITING_PIN = "AwaitingPin"
    CONFIRMED = "Confirmed"
    REJECTED = "Rejected"
    COMMITTING = "Committing"
    DONE = "Done"
    FAILED = "Failed"


class PinConfirmationFlow:
    """
    Drive one mutating request through validation, PIN check and commit.

    Idle → FormValid → AwaitingPin → Confirmed → Committing → Done
                                   ↘ Rejected → AwaitingPin (retry)

    Business-rule validation runs before the PIN prompt so an invalid request
    never costs a credential check. A commit that raises ends in Failed.
    """

    def __init__(self, operation: str):
        self.operation = operation
        self.state = FlowState.IDLE

    def _expect(self, *allowed: FlowState) -> None:
        if self.state not in allowed:
            raise InvalidFlowTransition(
                f"{self.operation}: cannot leave {self.state.value} this way"
            )

    def submit(self, validate: Callable[[], None]) -> None:
        """Check the form and every business-rule precondition; stays Idle if one fails"""
        self._expect(FlowState.IDLE)
        validate()
        self.state = FlowState.FORM_VALID

    def request_pin(self) -> None:
        self._expect(FlowState.FORM_VALID)
        self.state = FlowState.AWAITING_PIN

    def confirm(self, verify: Callable[[], bool]) -> bool:
        """Run the credential check; a rejection can be retried"""
        self._expect(FlowState.AWAITING_PIN, FlowState.REJECTED)
        self.state = FlowState.AWAITING_PIN
        try:
            accepted = verify()
        except AuthFailed:
            self.state = FlowState.REJECTED
            raise
        self.state = FlowState.CONFIRMED if accepted else FlowState.REJECTED
        return accepted

    def commit(self, mutate: Callable[[], T]) -> T:
        self._expect(FlowState.CONFIRMED)
        self.state = FlowState.COMMITTING
        try:
            result = mutate()
        except Exception:
            self.state = FlowState.FAILED
            raise
        self.state = FlowState.DONE
        return result
