"""
時刻正規化 - 入力ゆれのある時刻文字列を HH:MM に揃える
"""

import re
import logging
from typing import Optional, Union

logger = logging.getLogger(__name__)

# H:MM / HH:MM / H:M / HH:M
_COLON_PATTERN = re.compile(r"^(\d{1,2}):(\d{1,2})$")
# 時のみ（"7", "13"）
_HOUR_PATTERN = re.compile(r"^(\d{1,2})$")
# コンパクト形式（"900", "1700"）
_COMPACT_PATTERN = re.compile(r"^(\d{1,2})(\d{2})$")


def normalize_time(raw: Union[str, int, None]) -> Optional[str]:
    """時刻を HH:MM 形式に正規化する。解釈できない場合は None"""
    if raw is None:
        return None

    time_str = str(raw).strip()
    if not time_str:
        return None

    hours: Optional[int] = None
    minutes: Optional[int] = None

    match = _COLON_PATTERN.match(time_str)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
    elif _HOUR_PATTERN.match(time_str):
        hours, minutes = int(time_str), 0
    else:
        match = _COMPACT_PATTERN.match(time_str)
        if match:
            hours, minutes = int(match.group(1)), int(match.group(2))

    if hours is None or not (0 <= hours <= 23 and 0 <= minutes <= 59):
        logger.warning(f"Unable to normalize time format: \"{time_str}\"")
        return None

    return f"{hours:02d}:{minutes:02d}"


def to_minutes(hhmm: str) -> int:
    """HH:MM を0時からの分数に変換"""
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)
