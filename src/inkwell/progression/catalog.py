from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Literal, Mapping

AchievementCategory = Literal["entries", "streaks", "words", "ai", "prompts", "levels", "mood"]


@dataclass(frozen=True)
class AchievementDefinition:
    id: str
    name: str
    description: str
    icon: str
    points: int
    category: AchievementCategory
    requirement: int


ACHIEVEMENT_CATALOG: tuple[AchievementDefinition, ...] = (
    AchievementDefinition(
        id="first_entry",
        name="First Steps",
        description="Write your first journal entry",
        icon="PenLine",
        points=50,
        category="entries",
        requirement=1,
    ),
    AchievementDefinition(
        id="streak_3",
        name="Getting Started",
        description="Maintain a 3-day writing streak",
        icon="Flame",
        points=25,
        category="streaks",
        requirement=3,
    ),
    AchievementDefinition(
        id="streak_7",
        name="Week Warrior",
        description="Maintain a 7-day writing streak",
        icon="Flame",
        points=75,
        category="streaks",
        requirement=7,
    ),
    AchievementDefinition(
        id="streak_30",
        name="Monthly Master",
        description="Maintain a 30-day writing streak",
        icon="Trophy",
        points=300,
        category="streaks",
        requirement=30,
    ),
    AchievementDefinition(
        id="streak_100",
        name="Century Writer",
        description="Maintain a 100-day writing streak",
        icon="Crown",
        points=1000,
        category="streaks",
        requirement=100,
    ),
    AchievementDefinition(
        id="entries_10",
        name="Regular Writer",
        description="Write 10 journal entries",
        icon="BookOpen",
        points=50,
        category="entries",
        requirement=10,
    ),
    AchievementDefinition(
        id="entries_50",
        name="Seasoned Journaler",
        description="Write 50 journal entries",
        icon="BookOpen",
        points=150,
        category="entries",
        requirement=50,
    ),
    AchievementDefinition(
        id="entries_100",
        name="Centurion",
        description="Write 100 journal entries",
        icon="Award",
        points=500,
        category="entries",
        requirement=100,
    ),
    AchievementDefinition(
        id="words_500",
        name="Wordsmith",
        description="Write 500 words total",
        icon="FileText",
        points=25,
        category="words",
        requirement=500,
    ),
    AchievementDefinition(
        id="words_1000",
        name="Essay Writer",
        description="Write 1,000 words total",
        icon="FileText",
        points=75,
        category="words",
        requirement=1000,
    ),
    AchievementDefinition(
        id="insights_5",
        name="Curious Mind",
        description="Request 5 AI insights",
        icon="Brain",
        points=50,
        category="ai",
        requirement=5,
    ),
    AchievementDefinition(
        id="insights_20",
        name="Deep Thinker",
        description="Request 20 AI insights",
        icon="Brain",
        points=150,
        category="ai",
        requirement=20,
    ),
    AchievementDefinition(
        id="prompts_10",
        name="Prompt Explorer",
        description="Use 10 writing prompts",
        icon="Lightbulb",
        points=75,
        category="prompts",
        requirement=10,
    ),
    # Sentiment is computed by the AI service; no event here feeds this counter.
    AchievementDefinition(
        id="mood_positive",
        name="Positive Vibes",
        description="Have 5 entries with positive sentiment",
        icon="Smile",
        points=50,
        category="mood",
        requirement=5,
    ),
    AchievementDefinition(
        id="level_5",
        name="Committed Writer",
        description="Reach level 5",
        icon="Star",
        points=100,
        category="levels",
        requirement=5,
    ),
)

_BY_ID: Mapping[str, AchievementDefinition] = MappingProxyType(
    {item.id: item for item in ACHIEVEMENT_CATALOG}
)


def achievement_catalog() -> tuple[AchievementDefinition, ...]:
    return ACHIEVEMENT_CATALOG


def definitions_by_id() -> Mapping[str, AchievementDefinition]:
    return _BY_ID


def find_definition(achievement_id: str) -> AchievementDefinition | None:
    return _BY_ID.get(achievement_id)
