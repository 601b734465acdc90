"""
movetrail/features/milestones/catalog.py

The Movement Trail milestone catalog.

Read-only reference data keyed by day_number. Entries are validated once at
construction: ids and day numbers are unique and every repeatable entry
carries an interval.
"""

from typing import Dict, Iterable, List, Optional

from movetrail.models.milestone import (
    AppIconReward,
    BadgeReward,
    CustomReward,
    LeaderboardFlairReward,
    Milestone,
    ProfileFrameReward,
    TrialReward,
)


class MilestoneCatalog:
    def __init__(self, milestones: Iterable[Milestone]):
        ordered = sorted(milestones, key=lambda m: m.day_number)
        by_id: Dict[str, Milestone] = {}
        days = set()
        for milestone in ordered:
            if milestone.milestone_id in by_id:
                raise ValueError(f"duplicate milestone_id: {milestone.milestone_id}")
            if milestone.day_number in days:
                raise ValueError(f"duplicate day_number: {milestone.day_number}")
            by_id[milestone.milestone_id] = milestone
            days.add(milestone.day_number)
        self._ordered = ordered
        self._by_id = by_id

    def __len__(self) -> int:
        return len(self._ordered)

    def __iter__(self):
        return iter(self._ordered)

    def all(self) -> List[Milestone]:
        return list(self._ordered)

    def get(self, milestone_id: str) -> Optional[Milestone]:
        return self._by_id.get(milestone_id)

    def up_to(self, streak_length: int) -> List[Milestone]:
        """Entries reachable by a streak of this length (day_number <= n)."""
        return [m for m in self._ordered if m.day_number <= streak_length]

    def after(self, streak_length: int) -> List[Milestone]:
        return [m for m in self._ordered if m.day_number > streak_length]

    def repeatables(self) -> List[Milestone]:
        return [m for m in self._ordered if m.is_repeatable]


DEFAULT_MILESTONES = [
    Milestone(
        milestone_id="first_steps",
        day_number=3,
        name="First Steps",
        description="You've taken your first steps on the Movement Trail! Three days of consistent activity is a great start.",
        reward=BadgeReward(badge_id="first_steps", badge_name="First Steps", badge_tier="bronze"),
        icon_name="footprints",
        celebration_type="sparkle",
    ),
    Milestone(
        milestone_id="week_warrior",
        day_number=7,
        name="Week Warrior",
        description="A full week of movement! Unlock a 24-hour preview of Mover features.",
        reward=TrialReward(
            kind="trial_mover",
            trial_days=1,
            badge_id="week_warrior",
            features=["unlimited_competitions", "detailed_analytics"],
        ),
        icon_name="calendar-week",
        celebration_type="confetti",
    ),
    Milestone(
        milestone_id="fortnight_fighter",
        day_number=14,
        name="Fortnight Fighter",
        description="Two weeks strong! Earn an exclusive profile frame to show off your dedication.",
        reward=ProfileFrameReward(
            frame_id="fortnight_fighter",
            frame_name="Fortnight Fighter Frame",
            frame_rarity="uncommon",
        ),
        icon_name="shield-check",
        celebration_type="fireworks",
    ),
    Milestone(
        milestone_id="three_week_trek",
        day_number=21,
        name="Three Week Trek",
        description="Three weeks of consistency! Try AI Coach Spark free for 24 hours.",
        reward=TrialReward(kind="trial_coach", trial_days=1, coach_type="spark", messages_included=10),
        icon_name="mountain",
        celebration_type="sparkle",
    ),
    Milestone(
        milestone_id="monthly_mover",
        day_number=30,
        name="Monthly Mover",
        description="One month of movement! Earn a special badge and 3 days of Mover access.",
        reward=TrialReward(
            kind="trial_mover",
            trial_days=3,
            badge_id="monthly_mover",
            badge_name="Monthly Mover",
            badge_tier="silver",
        ),
        icon_name="calendar-check",
        celebration_type="confetti",
    ),
    Milestone(
        milestone_id="halfway_hero",
        day_number=45,
        name="Halfway Hero",
        description="Halfway to your first 90 days! Stand out on the leaderboards with special flair.",
        reward=LeaderboardFlairReward(
            flair_id="halfway_hero",
            flair_name="Halfway Hero",
            flair_color="#FFD700",
            flair_duration_days=30,
        ),
        icon_name="star-half",
        celebration_type="sparkle",
    ),
    Milestone(
        milestone_id="two_month_titan",
        day_number=60,
        name="Two Month Titan",
        description="Two months of dedication! Enjoy 48 hours of AI coaching.",
        reward=TrialReward(kind="trial_coach", trial_days=2, coach_type="spark", messages_included=20),
        icon_name="dumbbell",
        celebration_type="fireworks",
    ),
    Milestone(
        milestone_id="quarter_champion",
        day_number=90,
        name="Quarter Champion",
        description="A full quarter of consistent movement! Unlock an exclusive app icon.",
        reward=AppIconReward(icon_id="quarter_champion", icon_name="Quarter Champion", icon_rarity="rare"),
        icon_name="trophy",
        celebration_type="fireworks",
    ),
    Milestone(
        milestone_id="century_club",
        day_number=100,
        name="Century Club",
        description=(
            "Welcome to the Century Club! 100 days of movement earns you a badge, "
            "7-day Mover trial, and permanent leaderboard flair."
        ),
        reward=CustomReward(data={
            "badge_id": "century_club",
            "badge_name": "Century Club",
            "badge_tier": "gold",
            "trial_type": "mover",
            "trial_days": 7,
            "flair_id": "century_club",
            "flair_permanent": True,
        }),
        icon_name="hundred-points",
        celebration_type="fireworks",
    ),
    Milestone(
        milestone_id="trail_blazer",
        day_number=150,
        name="Trail Blazer",
        description="You're blazing your own trail! 150 days of dedication.",
        reward=BadgeReward(badge_id="trail_blazer", badge_name="Trail Blazer", badge_tier="gold"),
        icon_name="fire",
        celebration_type="confetti",
    ),
    Milestone(
        milestone_id="double_century",
        day_number=200,
        name="Double Century",
        description="200 days! Earn an exclusive profile frame and commemorative badge.",
        reward=CustomReward(data={
            "badge_id": "double_century",
            "badge_name": "Double Century",
            "badge_tier": "gold",
            "frame_id": "double_century",
            "frame_name": "Double Century Frame",
            "frame_rarity": "rare",
        }),
        icon_name="award",
        celebration_type="fireworks",
    ),
    Milestone(
        milestone_id="legendary",
        day_number=250,
        name="Legendary",
        description="You've achieved legendary status! Enjoy a full week of AI coaching.",
        reward=TrialReward(kind="trial_coach", trial_days=7, coach_type="spark", messages_included=50),
        icon_name="crown",
        celebration_type="fireworks",
    ),
    Milestone(
        milestone_id="movement_master",
        day_number=300,
        name="Movement Master",
        description="300 days of movement mastery! Unlock a rare app icon and badge.",
        reward=CustomReward(data={
            "badge_id": "movement_master",
            "badge_name": "Movement Master",
            "badge_tier": "platinum",
            "icon_id": "movement_master",
            "icon_name": "Movement Master",
            "icon_rarity": "epic",
        }),
        icon_name="gem",
        celebration_type="fireworks",
    ),
    Milestone(
        milestone_id="year_of_movement",
        day_number=365,
        name="Year of Movement",
        description=(
            "A FULL YEAR of movement! You've earned a 14-day Crusher trial and the "
            "legendary \"365\" badge. This is an incredible achievement!"
        ),
        reward=TrialReward(
            kind="trial_crusher",
            trial_days=14,
            badge_id="year_of_movement",
            badge_name="365 Days",
            badge_tier="platinum",
            badge_permanent=True,
            features=["all_crusher_features", "ai_coach_unlimited"],
        ),
        icon_name="sun",
        celebration_type="fireworks",
    ),
    # Every 100 days after the first year
    Milestone(
        milestone_id="century_milestone",
        day_number=465,
        name="Century Milestone",
        description="Another 100 days of movement! You continue to inspire. Earn a special century badge.",
        reward=BadgeReward(
            badge_id="century_milestone",
            badge_name="Century Milestone",
            badge_tier="platinum",
            shows_count=True,
        ),
        icon_name="infinity",
        celebration_type="confetti",
        is_repeatable=True,
        repeat_interval=100,
    ),
]


DEFAULT_CATALOG = MilestoneCatalog(DEFAULT_MILESTONES)
