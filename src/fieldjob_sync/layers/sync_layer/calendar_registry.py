"""
カレンダーレジストリ - チーム名 → キューカレンダーID
"""

from typing import Dict, Optional, Set, Tuple

from ...config.settings import CalendarsConfig
from ..data_processing.repair_rules import PersonalCalendarMatcher, TeamNameResolver, TeamRepairRule


class CalendarRegistry:
    """チームのキューカレンダーと個人カレンダー判定"""

    def __init__(self,
                 team_calendars: Dict[str, str],
                 team_resolver: Optional[TeamNameResolver] = None,
                 personal_matcher: Optional[PersonalCalendarMatcher] = None):
        self.team_calendars = {team: calendar_id for team, calendar_id in team_calendars.items() if calendar_id}
        self.team_resolver = team_resolver or TeamNameResolver(self.team_calendars)
        self.personal_matcher = personal_matcher or PersonalCalendarMatcher([])

    @classmethod
    def from_config(cls, config: CalendarsConfig) -> "CalendarRegistry":
        rules = [TeamRepairRule.from_dict(rule) for rule in config.team_repair_rules]
        known_teams = set(config.team_calendars) | set(config.team_calendar_env)
        return cls(
            team_calendars=config.team_calendars,
            team_resolver=TeamNameResolver(known_teams, rules),
            personal_matcher=PersonalCalendarMatcher(config.personal_calendar_patterns),
        )

    @property
    def queue_calendar_ids(self) -> Set[str]:
        return set(self.team_calendars.values())

    def resolve(self, raw_team: Optional[str]) -> Tuple[str, Optional[str]]:
        """(正規化チーム名, キューカレンダーID or None)"""
        team = self.team_resolver.resolve(raw_team)
        return team, self.team_calendars.get(team)

    def is_queue_calendar(self, calendar_id: str) -> bool:
        return calendar_id in self.queue_calendar_ids

    def is_personal(self, calendar_id: str, calendar_name: Optional[str]) -> bool:
        if self.is_queue_calendar(calendar_id):
            return False
        return self.personal_matcher.is_personal(calendar_name)
