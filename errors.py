# errors.py


class CardManagerError(Exception):
    """Base class for errors raised by the card manager."""


class InvalidQueryError(CardManagerError, ValueError):
    """Pagination or filter parameters were rejected before querying."""


class InvalidPatchError(CardManagerError, ValueError):
    """A patch tried to write a field that cannot be updated."""


class OcrError(CardManagerError):
    """The OCR collaborator failed to produce a result."""


class WorkflowError(CardManagerError):
    """The ingestion workflow was driven in a way it does not allow."""


class InvalidTransitionError(WorkflowError):
    def __init__(self, action: str, step: str):
        super().__init__(f"cannot {action} while in step '{step}'")
        self.action = action
        self.step = step


class CardNotFoundError(WorkflowError, LookupError):
    def __init__(self, card_id: str):
        super().__init__(f"card '{card_id}' does not exist")
        self.card_id = card_id
