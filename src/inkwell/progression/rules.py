from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Mapping

from inkwell.progression.catalog import AchievementDefinition, definitions_by_id
from inkwell.progression.models import AchievementProgress, ProgressState

POINTS_ENTRY_CREATED = 10
POINTS_FIRST_ENTRY_OF_DAY = 5
POINTS_STREAK_CONTINUED = 15
POINTS_AI_INSIGHT = 5
POINTS_PROMPT_USED = 5

# Highest matching tier wins; tiers do not stack.
WORD_BONUS_TIERS: tuple[tuple[int, int], ...] = (
    (500, 15),
    (300, 10),
    (100, 5),
)

STREAK_MILESTONE_BONUS: dict[int, int] = {
    7: 50,
    30: 200,
}

LEVELS: tuple[tuple[int, int, str], ...] = (
    (0, 1, "Beginner"),
    (100, 2, "Novice Writer"),
    (300, 3, "Aspiring Writer"),
    (600, 4, "Dedicated Journaler"),
    (1000, 5, "Committed Writer"),
    (1500, 6, "Experienced Journaler"),
    (2500, 7, "Prolific Writer"),
    (4000, 8, "Master Journaler"),
    (6000, 9, "Expert Writer"),
    (9000, 10, "Legendary Journaler"),
)


def word_bonus(word_count: int) -> int:
    for threshold, bonus in WORD_BONUS_TIERS:
        if word_count >= threshold:
            return bonus
    return 0


def level_from_points(lifetime_points: int) -> tuple[int, str]:
    points = max(0, lifetime_points)
    level, title = LEVELS[0][1], LEVELS[0][2]
    for min_points, candidate_level, candidate_title in LEVELS:
        if points < min_points:
            break
        level, title = candidate_level, candidate_title
    return level, title


def next_level_threshold(lifetime_points: int) -> int | None:
    """Lifetime points needed for the next level, or None at the top level."""
    level, _ = level_from_points(lifetime_points)
    for min_points, candidate_level, _title in LEVELS:
        if candidate_level == level + 1:
            return min_points
    return None


@dataclass(frozen=True)
class StreakTransition:
    streak: int
    first_of_day: bool
    continued: bool = False
    backdated: bool = False
    milestones: tuple[int, ...] = ()

    def bonus_points(self) -> int:
        points = POINTS_STREAK_CONTINUED if self.continued else 0
        return points + sum(STREAK_MILESTONE_BONUS[m] for m in self.milestones)


def advance_streak(
    today: date, last_entry_date: date | None, current_streak: int
) -> StreakTransition:
    """Streak state machine for one entry written on ``today``."""
    if last_entry_date is None:
        return StreakTransition(streak=1, first_of_day=True)
    if last_entry_date == today:
        return StreakTransition(streak=current_streak, first_of_day=False)
    if last_entry_date > today:
        return StreakTransition(streak=current_streak, first_of_day=True, backdated=True)
    if last_entry_date == today - timedelta(days=1):
        streak = current_streak + 1
        milestones = (streak,) if streak in STREAK_MILESTONE_BONUS else ()
        return StreakTransition(
            streak=streak,
            first_of_day=True,
            continued=True,
            milestones=milestones,
        )
    return StreakTransition(streak=1, first_of_day=True)


def with_level(state: ProgressState) -> ProgressState:
    level, title = level_from_points(state.lifetime_points)
    return replace(state, level=level, level_title=title)


def category_progress(state: ProgressState, definition: AchievementDefinition) -> int:
    if definition.category == "entries":
        return state.total_entries
    if definition.category == "streaks":
        return state.current_streak
    if definition.category == "words":
        return state.total_words
    if definition.category == "ai":
        return state.insights_requested
    if definition.category == "prompts":
        return state.prompts_used
    if definition.category == "levels":
        return state.level
    return 0


def evaluate_achievements(
    state: ProgressState,
    now: datetime,
    definitions: Mapping[str, AchievementDefinition] | None = None,
) -> tuple[ProgressState, tuple[str, ...]]:
    """Refresh progress on locked achievements and unlock those that qualify.

    Bonus points are added to the balance and lifetime total but the level is
    not recomputed here; it catches up on the next event.
    """
    catalog = definitions if definitions is not None else definitions_by_id()
    updated: list[AchievementProgress] = []
    unlocked: list[str] = []
    bonus = 0
    for item in state.achievements:
        definition = catalog.get(item.id)
        if item.unlocked or definition is None:
            updated.append(item)
            continue
        progress = category_progress(state, definition)
        if progress >= definition.requirement:
            updated.append(
                AchievementProgress(
                    id=item.id,
                    unlocked=True,
                    unlocked_at=now,
                    progress=progress,
                )
            )
            unlocked.append(item.id)
            bonus += definition.points
        else:
            updated.append(replace(item, progress=progress))

    evaluated = replace(
        state,
        achievements=tuple(updated),
        points_balance=state.points_balance + bonus,
        lifetime_points=state.lifetime_points + bonus,
    )
    return evaluated, tuple(unlocked)
