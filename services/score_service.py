"""
評分規則服務：驗證四個分數維度

每個維度都是整數，不是未評分的標記值，就是落在 [score_min, score_max] 之間。
範圍來自 Settings，不同比賽可以使用不同規則（0-10、0-25 ...）。
"""
from typing import Dict, Mapping, Optional

from core.exceptions import ValidationError
from database import Settings, get_settings
from models import Mark

SCORE_FIELDS = Mark.SCORE_FIELDS


def check_score(field: str, value, settings: Optional[Settings] = None) -> int:
    """
    驗證單一分數

    異常：
        ValidationError: 不是 int（包含 bool）或超出範圍
    """
    settings = settings or get_settings()

    # bool 是 int 的子類別
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer, got {value!r}")

    if value == settings.score_unset:
        return value

    if not settings.score_min <= value <= settings.score_max:
        raise ValidationError(
            f"{field} must be between {settings.score_min} and {settings.score_max}, got {value}"
        )
    return value


def validate_scores(
    scores: Mapping[str, int],
    settings: Optional[Settings] = None,
    partial: bool = False
) -> Dict[str, int]:
    """
    驗證完整或部分的分數

    參數：
        scores: {field: value}
        partial: 為 False 時，未提供的維度預設為未評分標記值

    返回：
        驗證後的 {field: value}

    異常：
        ValidationError: 未知欄位、型別錯誤或超出範圍
    """
    settings = settings or get_settings()

    unknown = set(scores) - set(SCORE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown score fields: {sorted(unknown)}")

    validated = {}
    for field in SCORE_FIELDS:
        if field in scores:
            validated[field] = check_score(field, scores[field], settings)
        elif not partial:
            validated[field] = settings.score_unset

    if partial and not validated:
        raise ValidationError("No score fields given")
    return validated


def zero_scores(settings: Optional[Settings] = None) -> Dict[str, int]:
    """每個維度都給最低分（未評分隊伍的預設值）"""
    settings = settings or get_settings()
    return {field: settings.score_min for field in SCORE_FIELDS}
