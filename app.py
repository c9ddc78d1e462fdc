# app.py
# ------------------------------------------------------------
# 名刺管理 (Streamlit + LangGraph)
#   streamlit run app.py
# ------------------------------------------------------------
import streamlit as st

from auth import StaticAuthProvider
from config import configure_logging, get_settings
from ocr import build_ocr_engine
from repository import CardRepository
from ui import (
    init_session_state,
    render_contact_database,
    render_login,
    render_upload_page,
)
from workflow import IngestionWorkflow


@st.cache_resource
def get_repository() -> CardRepository:
    # プロセス内で1つだけ。全セッションで共有
    configure_logging()
    settings = get_settings()
    return CardRepository(export_locale=settings.export_locale, export_tz=settings.tzinfo)


def get_workflow(repository: CardRepository) -> IngestionWorkflow:
    # アップロードのセッションはブラウザのセッションごと
    if "workflow" not in st.session_state:
        settings = get_settings()
        st.session_state.workflow = IngestionWorkflow(repository, build_ocr_engine(settings), settings)
    return st.session_state.workflow


def main():
    st.set_page_config(page_title="名刺管理", page_icon="📇", layout="wide")
    st.title("📇 名刺管理")

    settings = get_settings()
    repository = get_repository()
    init_session_state()

    if st.session_state.user is None:
        render_login(StaticAuthProvider.from_settings(settings))
        return

    with st.sidebar:
        st.write(f"👤 {st.session_state.user.display_name}")
        page = st.radio("メニュー", ["名刺一覧", "名刺アップロード"])
        if st.button("ログアウト"):
            st.session_state.clear()
            st.rerun()

    if page == "名刺アップロード":
        render_upload_page(get_workflow(repository))
    else:
        render_contact_database(repository, settings)


main()
