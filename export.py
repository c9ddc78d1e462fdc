# export.py
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Callable, Dict, Iterable, List

import pandas as pd

from models import CONTACT_FIELDS, BusinessCard, CardStatus


def _format_ja(dt: datetime) -> str:
    # toLocaleString('ja-JP') 相当: 2024/1/5 9:05:03
    return f"{dt.year}/{dt.month}/{dt.day} {dt.hour}:{dt.minute:02d}:{dt.second:02d}"


def _format_en(dt: datetime) -> str:
    # toLocaleString('en-US') 相当: 1/5/2024, 9:05:03 AM
    hour = dt.hour % 12 or 12
    suffix = "AM" if dt.hour < 12 else "PM"
    return f"{dt.month}/{dt.day}/{dt.year}, {hour}:{dt.minute:02d}:{dt.second:02d} {suffix}"


@dataclass(frozen=True)
class ExportLocale:
    headers: List[str]
    status_labels: Dict[CardStatus, str]
    format_datetime: Callable[[datetime], str]


LOCALES: Dict[str, ExportLocale] = {
    "ja": ExportLocale(
        headers=[
            "会社名", "氏名", "部署", "役職", "メールアドレス", "電話番号",
            "住所", "Webサイト", "ステータス", "登録日時", "更新日時",
        ],
        status_labels={CardStatus.VERIFIED: "確認済み", CardStatus.UNVERIFIED: "未確認"},
        format_datetime=_format_ja,
    ),
    "en": ExportLocale(
        headers=[
            "Company", "Name", "Department", "Position", "Email", "Phone",
            "Address", "Website", "Status", "Created", "Updated",
        ],
        status_labels={CardStatus.VERIFIED: "Verified", CardStatus.UNVERIFIED: "Unverified"},
        format_datetime=_format_en,
    ),
}


def get_locale(name: str) -> ExportLocale:
    try:
        return LOCALES[name]
    except KeyError:
        raise ValueError(f"unsupported export locale: {name}") from None


def quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def card_row(card: BusinessCard, locale: ExportLocale, tz: tzinfo) -> List[str]:
    return [getattr(card, name) for name in CONTACT_FIELDS] + [
        locale.status_labels[card.status],
        locale.format_datetime(card.created_at.astimezone(tz)),
        locale.format_datetime(card.updated_at.astimezone(tz)),
    ]


def to_delimited(cards: Iterable[BusinessCard], locale: str, tz: tzinfo) -> str:
    """Header row plus one fully quoted row per card, joined by ``\\n``."""
    loc = get_locale(locale)
    lines = [",".join(loc.headers)]
    for card in cards:
        lines.append(",".join(quote(v) for v in card_row(card, loc, tz)))
    return "\n".join(lines)


def to_dataframe(cards: Iterable[BusinessCard], locale: str, tz: tzinfo) -> pd.DataFrame:
    loc = get_locale(locale)
    cards = list(cards)
    return pd.DataFrame(
        [card_row(card, loc, tz) for card in cards],
        columns=loc.headers,
        index=pd.Index([card.id for card in cards], name="id"),
    )
