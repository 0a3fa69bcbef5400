"""
データ品質修復ルール - 文字化けチーム名・個人カレンダー判定・カラム入れ違い
ルールはすべて設定から差し替え可能
"""

import logging
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class TeamRepairRule:
    """部分一致でチーム名を復元するルール

    `contains` のトークンがすべて含まれる場合に `team` へ置き換える。
    例: "??? A" -> contains=["???", "A"], team="ทีม A"
    """
    contains: List[str]
    team: str

    def matches(self, raw_team: str) -> bool:
        return bool(self.contains) and all(token in raw_team for token in self.contains)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TeamRepairRule":
        contains = data.get("contains", [])
        if isinstance(contains, str):
            contains = [contains]
        return cls(contains=list(contains), team=data["team"])


class TeamNameResolver:
    """チーム名の正規化"""

    def __init__(self, known_teams: Iterable[str], rules: Sequence[TeamRepairRule] = ()):
        self.known_teams = set(known_teams)
        self.rules = list(rules)

    def resolve(self, raw_team: Optional[str]) -> str:
        """既知のチーム名ならそのまま、それ以外は修復ルールを順に適用"""
        if not raw_team:
            return ""

        team = unicodedata.normalize("NFC", raw_team.strip())
        if team in self.known_teams:
            return team

        for rule in self.rules:
            if rule.matches(team):
                logger.info(f"Fixed corrupted team name: \"{raw_team}\" → \"{rule.team}\"")
                return rule.team

        return team


class PersonalCalendarMatcher:
    """カレンダー名による個人カレンダー判定（大文字小文字を区別しない）"""

    def __init__(self, patterns: Iterable[str]):
        self.patterns = [pattern.lower() for pattern in patterns if pattern]

    def is_personal(self, calendar_name: Optional[str]) -> bool:
        name = (calendar_name or "").lower()
        return any(pattern in name for pattern in self.patterns)


@dataclass
class FieldSwapRule:
    """互いの値域が入れ違った2カラムの検出ルール

    `first_field` に `second_field` 側の値（またはその逆）が入っていれば入れ替え対象。
    """
    first_field: str
    second_field: str
    # first_field に入るべきでない（= second_field の）値
    second_field_values: List[str] = field(default_factory=list)
    # second_field に入るべきでない（= first_field の）値
    first_field_values: List[str] = field(default_factory=list)

    def needs_swap(self, record: Dict[str, str]) -> bool:
        first_value = (record.get(self.first_field) or "").strip()
        second_value = (record.get(self.second_field) or "").strip()
        return first_value in self.second_field_values or second_value in self.first_field_values

    def swapped(self, record: Dict[str, str]) -> Dict[str, str]:
        """入れ替え後の部分更新データ"""
        return {
            self.first_field: record.get(self.second_field, ""),
            self.second_field: record.get(self.first_field, ""),
        }
