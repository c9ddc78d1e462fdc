# graph.py
"""LangGraph save flow: duplicate check → human gate → decision → save."""

from typing import List, Literal, Optional, TypedDict

from langgraph.graph import END, StateGraph
from loguru import logger

from models import BusinessCard, CardStatus, ContactFields, DuplicateCandidate, NewCard, OcrResult
from repository import CardRepository

Decision = Literal["update", "new"]


class SaveState(TypedDict, total=False):
    fields: ContactFields                     # レビュー済みの入力
    image_ref: str
    ocr: OcrResult
    decision: Optional[Decision]              # 重複時のユーザー判断
    target_id: Optional[str]                  # decision == "update" の対象
    duplicates: List[DuplicateCandidate]      # 衝突分
    need_human: bool                          # True → UI 介入
    action: Literal["create", "update"]
    saved_card: Optional[BusinessCard]


def create_graph(repository: CardRepository):
    def check_dup(state: SaveState) -> SaveState:
        if state.get("decision"):
            # 判断済みなら再チェックしない
            return {"need_human": False}
        email = state["fields"].get("email", "")
        if not email:
            # email がない場合は重複チェック不可能なので、新規として扱う
            logger.info("No email on card, duplicate check skipped")
            return {"duplicates": [], "need_human": False}
        duplicates = repository.find_duplicates(email)
        return {"duplicates": duplicates, "need_human": bool(duplicates)}

    def gate(state: SaveState) -> str:
        # 重複ありかつ decision 未確定 → 一時停止
        return END if state["need_human"] else "apply"

    def apply_decision(state: SaveState) -> SaveState:
        if state.get("decision") == "update":
            return {"action": "update"}
        return {"action": "create"}

    def save_node(state: SaveState) -> SaveState:
        fields = state["fields"]
        if state["action"] == "update":
            card = repository.update(
                state["target_id"],
                {**fields, "status": CardStatus.UNVERIFIED},
            )
        else:
            card = repository.create(NewCard(
                **fields,
                image_ref=state.get("image_ref", ""),
                ocr=state.get("ocr") or OcrResult.empty(),
                status=CardStatus.UNVERIFIED,
            ))
        return {"saved_card": card}

    sg = StateGraph(SaveState)
    sg.add_node("check", check_dup)
    sg.add_node("apply", apply_decision)
    sg.add_node("save", save_node)

    sg.set_entry_point("check")
    sg.add_conditional_edges("check", gate, {"apply": "apply", END: END})
    sg.add_edge("apply", "save")
    sg.set_finish_point("save")
    return sg.compile()
