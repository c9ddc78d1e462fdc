# ui.py
import asyncio
from datetime import date

import streamlit as st

from auth import AuthProvider
from config import Settings
from errors import CardNotFoundError
from export import get_locale, to_dataframe
from models import BusinessCard, CardStatus
from ocr import CardImage
from repository import CardRepository
from workflow import IngestionWorkflow, WorkflowStep

FIELD_LABELS = {
    "company_name": "会社名",
    "person_name": "氏名",
    "department": "部署",
    "position": "役職",
    "email": "メールアドレス",
    "phone": "電話番号",
    "address": "住所",
    "website": "Webサイト",
}

STATUS_LABELS = get_locale("ja").status_labels

STEP_LABELS = ["画像選択", "OCR処理", "内容確認", "完了"]


def init_session_state():
    if "user" not in st.session_state: st.session_state.user = None
    if "page" not in st.session_state: st.session_state.page = 1
    if "editing_id" not in st.session_state: st.session_state.editing_id = None
    if "deleting_id" not in st.session_state: st.session_state.deleting_id = None


def render_login(auth: AuthProvider):
    st.subheader("🔐 ログイン")
    with st.form("login"):
        email = st.text_input("メールアドレス")
        password = st.text_input("パスワード", type="password")
        if st.form_submit_button("ログイン"):
            user = auth.authenticate(email, password)
            if user is None:
                st.error("メールアドレスまたはパスワードが正しくありません")
            else:
                st.session_state.user = user
                st.rerun()


def render_progress(workflow: IngestionWorkflow):
    # duplicate は「内容確認」扱い
    current = {
        WorkflowStep.SELECT: 0,
        WorkflowStep.PROCESSING: 1,
        WorkflowStep.REVIEW: 2,
        WorkflowStep.DUPLICATE: 2,
        WorkflowStep.COMPLETE: 3,
    }[workflow.step]
    cols = st.columns(len(STEP_LABELS))
    for i, (col, label) in enumerate(zip(cols, STEP_LABELS)):
        text = f"**{i + 1}. {label}**" if i == current else f"{i + 1}. {label}"
        col.markdown(text)


def render_upload_tabs(workflow: IngestionWorkflow):
    if workflow.step != WorkflowStep.SELECT:
        return

    tab1, tab2 = st.tabs(["📁 ファイルアップロード", "📷 カメラで撮影"])
    with tab1:
        upload = st.file_uploader("名刺画像を選択", type=["png", "jpg", "jpeg", "webp"], key="card_file")
    with tab2:
        camera_img = st.camera_input("カメラで名刺を撮影", key="camera_image")

    selected = upload or camera_img
    if selected is None:
        return
    workflow.select_image(CardImage.from_upload(selected))
    st.image(selected.getvalue(), caption=workflow.image.name, width=320)

    if st.button("🖨️ OCR処理を開始"):
        with st.spinner("OCR処理中..."):
            asyncio.run(workflow.run_ocr())
        st.rerun()


def render_edit_form(workflow: IngestionWorkflow):
    if workflow.step != WorkflowStep.REVIEW:
        return

    st.subheader("📝 OCR結果の確認")
    if workflow.ocr_error:
        st.warning(f"OCRに失敗しました。手入力してください（{workflow.ocr_error}）")
    elif workflow.ocr_result is not None:
        st.caption(f"OCR信頼度: {workflow.ocr_result.confidence * 100:.1f}%")
        if workflow.low_confidence:
            st.warning("OCRの信頼度が低いため、内容をよく確認してください。")
    st.caption(f"ステータス: {STATUS_LABELS[workflow.status]}")

    with st.form("review"):
        cols = st.columns(2)
        values = {}
        for i, (name, label) in enumerate(FIELD_LABELS.items()):
            with cols[i % 2]:
                values[name] = st.text_input(label, workflow.fields.get(name, ""), key=f"review_{name}")
        saved = st.form_submit_button("保存")

    if saved:
        workflow.edit_fields(**values)
        workflow.save()
        st.rerun()


def render_duplicate_resolution(workflow: IngestionWorkflow):
    if workflow.step != WorkflowStep.DUPLICATE:
        return

    st.subheader("⚠️ 重複カードの処理")
    st.write("登録済みデータと同じメールアドレスの名刺があります。")
    options = {
        d.card.id: f"{d.card.email} ({d.card.person_name} / {d.card.company_name}) 類似度 {d.similarity:.0%}"
        for d in workflow.duplicates
    }
    target = st.radio("上書きする名刺", list(options), format_func=options.get, key="dup_target")

    col1, col2, col3 = st.columns(3)
    if col1.button("既存データを更新"):
        try:
            workflow.update_existing(target)
        except CardNotFoundError:
            st.error("選択した名刺はすでに削除されています。")
            return
        st.rerun()
    if col2.button("新規として保存"):
        workflow.save_as_new()
        st.rerun()
    if col3.button("キャンセル"):
        workflow.cancel_duplicate()
        st.rerun()


def render_complete(workflow: IngestionWorkflow):
    if workflow.step != WorkflowStep.COMPLETE:
        return
    card = workflow.saved_card
    st.success(f"保存完了！ {card.person_name or card.email or card.id}")
    if st.button("続けてアップロード"):
        workflow.reset()
        st.rerun()


def render_upload_page(workflow: IngestionWorkflow):
    st.header("📇 名刺アップロード")
    render_progress(workflow)
    render_upload_tabs(workflow)
    render_edit_form(workflow)
    render_duplicate_resolution(workflow)
    render_complete(workflow)
    if workflow.step in (WorkflowStep.REVIEW, WorkflowStep.DUPLICATE):
        if st.button("最初からやり直す"):
            workflow.reset()
            st.rerun()


def clamp_page(page: int, total_pages: int) -> int:
    return min(max(page, 1), max(total_pages, 1))


def duplicate_email_notice(repository: CardRepository, card_id: str, email: str):
    dups = repository.find_duplicates(email, exclude_id=card_id)
    if not dups:
        return None
    return f"同じメールアドレスの名刺が他に{len(dups)}件あります。"


def render_card_editor(repository: CardRepository, card: BusinessCard):
    with st.form(f"edit_{card.id}"):
        values = {
            name: st.text_input(label, getattr(card, name), key=f"edit_{card.id}_{name}")
            for name, label in FIELD_LABELS.items()
        }
        status = st.selectbox(
            "ステータス", list(CardStatus), index=list(CardStatus).index(card.status),
            format_func=STATUS_LABELS.get,
        )
        if st.form_submit_button("更新"):
            # rerun 後に表示するため session_state に残す
            st.session_state.editor_notice = duplicate_email_notice(repository, card.id, values["email"])
            repository.update(card.id, {**values, "status": status})
            st.session_state.editing_id = None
            st.rerun()


def render_delete_confirm(repository: CardRepository, card: BusinessCard):
    st.warning("この名刺を削除しますか？この操作は取り消せません。")
    c1, c2 = st.columns(2)
    if c1.button("削除する", key=f"confirm_delete_{card.id}"):
        repository.delete(card.id)
        st.session_state.deleting_id = None
        st.rerun()
    if c2.button("キャンセル", key=f"cancel_delete_{card.id}"):
        st.session_state.deleting_id = None
        st.rerun()


def render_contact_database(repository: CardRepository, settings: Settings):
    st.header("📚 名刺一覧")
    notice = st.session_state.pop("editor_notice", None)
    if notice:
        st.warning(notice)

    col1, col2 = st.columns([3, 1])
    search = col1.text_input("🔍 検索", key="search_term", placeholder="会社名・氏名・メール・部署・役職")
    status = col2.selectbox(
        "ステータス", ["all", CardStatus.VERIFIED, CardStatus.UNVERIFIED],
        format_func=lambda s: "すべて" if s == "all" else STATUS_LABELS[s],
    )
    # ページ番号は number_input(key="page") が持つ。ウィジェット生成前にだけ書き換える
    if "page" not in st.session_state:
        st.session_state.page = 1
    # 検索条件が変わったら1ページ目へ
    filters = (search, status)
    if st.session_state.get("last_filters") != filters:
        st.session_state.last_filters = filters
        st.session_state.page = 1

    result = repository.query(st.session_state.page, settings.page_size, search=search, status=status)
    page = clamp_page(result.page, result.total_pages)
    if page != result.page:
        # 削除などでページ数が減った
        st.session_state.page = page
        result = repository.query(page, settings.page_size, search=search, status=status)
    st.caption(f"全 {repository.count()} 件中 {result.total} 件該当")

    df = to_dataframe(result.data, settings.export_locale, settings.tzinfo)
    st.dataframe(df, use_container_width=True, hide_index=True)

    if result.total_pages > 1:
        st.number_input(
            f"ページ (1〜{result.total_pages})", min_value=1, max_value=result.total_pages, key="page",
        )

    for card in result.data:
        with st.expander(f"{card.person_name or '名前なし'} - {card.company_name or '会社名なし'}"):
            ocr = card.ocr
            st.caption(f"OCR信頼度: {ocr.confidence * 100:.1f}% / {STATUS_LABELS[card.status]}")
            c1, c2, c3 = st.columns(3)
            if c1.button("編集", key=f"edit_btn_{card.id}"):
                st.session_state.editing_id = card.id
            if card.status == CardStatus.UNVERIFIED and c2.button("確認済みにする", key=f"verify_{card.id}"):
                repository.set_status(card.id, CardStatus.VERIFIED)
                st.rerun()
            if c3.button("削除", key=f"delete_{card.id}"):
                st.session_state.deleting_id = card.id
            if st.session_state.deleting_id == card.id:
                render_delete_confirm(repository, card)
            if st.session_state.editing_id == card.id:
                render_card_editor(repository, card)

    csv = repository.export_delimited(settings.export_locale, settings.tzinfo)
    st.download_button(
        "CSVエクスポート",
        data=("\ufeff" + csv).encode("utf-8"),
        file_name=f"名刺データ_{date.today().isoformat()}.csv",
        mime="text/csv",
    )
