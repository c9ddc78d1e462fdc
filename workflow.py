# workflow.py
"""Ingestion state machine for a single upload session.

select → processing → review → (duplicate) → complete

``reset()`` returns to ``select`` from every step except ``processing``;
an in-flight OCR is stopped with ``cancel_ocr()`` instead.
"""

import asyncio
from enum import Enum
from typing import List, Optional

from loguru import logger

from config import Settings, get_settings
from errors import CardNotFoundError, InvalidTransitionError, OcrError, WorkflowError
from graph import create_graph
from models import (
    CONTACT_FIELDS,
    BusinessCard,
    CardStatus,
    ContactFields,
    DuplicateCandidate,
    OcrResult,
)
from ocr import CardImage, OcrEngine
from repository import CardRepository


class WorkflowStep(str, Enum):
    SELECT = "select"
    PROCESSING = "processing"
    REVIEW = "review"
    DUPLICATE = "duplicate"
    COMPLETE = "complete"


class IngestionWorkflow:
    def __init__(self, repository: CardRepository, ocr_engine: OcrEngine,
                 settings: Optional[Settings] = None):
        self.repository = repository
        self.ocr_engine = ocr_engine
        self.settings = settings or get_settings()
        self._graph = create_graph(repository)
        self._ocr_task: Optional[asyncio.Future] = None
        self._clear()

    def _clear(self) -> None:
        self.step = WorkflowStep.SELECT
        self.image: Optional[CardImage] = None
        self.ocr_result: Optional[OcrResult] = None
        self.ocr_error: Optional[str] = None
        self.fields: ContactFields = {}
        self.status = CardStatus.UNVERIFIED
        self.duplicates: List[DuplicateCandidate] = []
        self.saved_card: Optional[BusinessCard] = None

    def _require(self, action: str, *steps: WorkflowStep) -> None:
        if self.step not in steps:
            raise InvalidTransitionError(action, self.step.value)

    def _move(self, step: WorkflowStep) -> None:
        logger.debug("workflow {} -> {}", self.step.value, step.value)
        self.step = step

    @property
    def low_confidence(self) -> bool:
        if self.ocr_result is None:
            return False
        return self.ocr_result.confidence < self.settings.low_confidence_threshold

    # ---- select / processing -------------------------------------------

    def select_image(self, image: CardImage) -> None:
        self._require("select an image", WorkflowStep.SELECT)
        self.image = image

    async def run_ocr(self) -> WorkflowStep:
        self._require("run OCR", WorkflowStep.SELECT)
        if self.image is None:
            raise WorkflowError("no image selected")
        self._move(WorkflowStep.PROCESSING)

        task = asyncio.ensure_future(
            asyncio.wait_for(self.ocr_engine.extract(self.image), self.settings.ocr_timeout)
        )
        self._ocr_task = task
        try:
            result = await task
        except asyncio.CancelledError:
            if self._ocr_task is not task:
                # cancel_ocr() で中断済み。状態はすでに select に戻っている
                logger.info("OCR cancelled")
                return self.step
            self._ocr_task = None
            self._clear()
            raise
        except (OcrError, asyncio.TimeoutError) as exc:
            # OCR 失敗は致命的ではない。空の結果でレビューへ進む
            self.ocr_error = str(exc) or "OCR timed out"
            logger.warning("OCR failed for {}: {}", self.image.name, self.ocr_error)
            result = OcrResult.empty()
        except Exception as exc:
            self.ocr_error = str(exc) or type(exc).__name__
            logger.exception("Unexpected OCR failure for {}", self.image.name)
            result = OcrResult.empty()
        self._ocr_task = None
        self._enter_review(result)
        return self.step

    def cancel_ocr(self) -> None:
        self._require("cancel OCR", WorkflowStep.PROCESSING)
        task, self._ocr_task = self._ocr_task, None
        if task is not None:
            task.cancel()
        self._clear()

    def _enter_review(self, result: OcrResult) -> None:
        self.ocr_result = result
        self.fields = result.extracted_fields.as_contact()
        self.status = CardStatus.UNVERIFIED
        if not result.extracted_fields.detected():
            logger.warning("OCR detected no fields for {}", self.image.name if self.image else "image")
        elif self.low_confidence:
            logger.warning("Low OCR confidence {:.2f}", result.confidence)
        self._move(WorkflowStep.REVIEW)

    # ---- review ----------------------------------------------------------

    def edit_fields(self, **changes: str) -> None:
        self._require("edit fields", WorkflowStep.REVIEW)
        unknown = set(changes) - set(CONTACT_FIELDS)
        if unknown:
            raise WorkflowError(f"unknown fields: {', '.join(sorted(unknown))}")
        self.fields = {**self.fields, **{k: v or "" for k, v in changes.items()}}

    def save(self) -> WorkflowStep:
        self._require("save", WorkflowStep.REVIEW)
        result = self._graph.invoke(self._save_state())
        if result.get("need_human"):
            self.duplicates = result["duplicates"]
            logger.info("{} duplicate(s) found for {}", len(self.duplicates), self.fields.get("email"))
            self._move(WorkflowStep.DUPLICATE)
        else:
            self._complete(result["saved_card"])
        return self.step

    # ---- duplicate -------------------------------------------------------

    def update_existing(self, card_id: str) -> BusinessCard:
        self._require("update an existing card", WorkflowStep.DUPLICATE)
        if card_id not in {d.card.id for d in self.duplicates}:
            raise WorkflowError(f"card '{card_id}' is not a duplicate candidate")
        result = self._graph.invoke(self._save_state(decision="update", target_id=card_id))
        card = result.get("saved_card")
        if card is None:
            raise CardNotFoundError(card_id)
        self._complete(card)
        return card

    def save_as_new(self) -> BusinessCard:
        self._require("save as new", WorkflowStep.DUPLICATE)
        result = self._graph.invoke(self._save_state(decision="new"))
        self._complete(result["saved_card"])
        return result["saved_card"]

    def cancel_duplicate(self) -> None:
        self._require("cancel duplicate resolution", WorkflowStep.DUPLICATE)
        self.duplicates = []
        self._move(WorkflowStep.REVIEW)

    # ---- complete / reset --------------------------------------------------

    def _save_state(self, decision=None, target_id=None) -> dict:
        return {
            "fields": dict(self.fields),
            "image_ref": self.image.ref if self.image else "",
            "ocr": self.ocr_result or OcrResult.empty(),
            "decision": decision,
            "target_id": target_id,
        }

    def _complete(self, card: BusinessCard) -> None:
        self.saved_card = card
        self.duplicates = []
        self._move(WorkflowStep.COMPLETE)

    def reset(self) -> None:
        self._require(
            "reset",
            WorkflowStep.SELECT,
            WorkflowStep.REVIEW,
            WorkflowStep.DUPLICATE,
            WorkflowStep.COMPLETE,
        )
        self._clear()
