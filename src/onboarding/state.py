"""
Onboarding State.

Step order, the user projection read from the profile, and the predicates
that decide whether a step is done.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .selection import SELECTION_BOUNDS, Category


class OnboardingStep(Enum):
    """Onboarding flow steps, in order."""
    INTERESTS = "interests"
    SUBCATEGORIES = "subcategories"
    DEAL_BREAKERS = "deal-breakers"
    COMPLETE = "complete"

    @property
    def path(self) -> str:
        return f"/{self.value}"

    @property
    def category(self) -> Category | None:
        """Selection category collected on this step (None for complete)."""
        return STEP_CATEGORIES.get(self)

    @property
    def index(self) -> int:
        return STEP_ORDER.index(self)


STEP_ORDER: list[OnboardingStep] = list(OnboardingStep)

STEP_CATEGORIES: dict[OnboardingStep, Category] = {
    OnboardingStep.INTERESTS: Category.INTERESTS,
    OnboardingStep.SUBCATEGORIES: Category.SUBCATEGORIES,
    OnboardingStep.DEAL_BREAKERS: Category.DEALBREAKERS,
}

STEP_NAMES: dict[OnboardingStep, str] = {
    OnboardingStep.INTERESTS: "Interests",
    OnboardingStep.SUBCATEGORIES: "Subcategories",
    OnboardingStep.DEAL_BREAKERS: "Deal Breakers",
    OnboardingStep.COMPLETE: "Complete",
}

# Paths reachable without a session
ENTRY_PATHS = frozenset({"/onboarding", "/register", "/login"})
LOGIN_PATH = "/login"
HOME_PATH = "/home"


def step_for_path(path: str) -> OnboardingStep | None:
    """Map a route path (query string ignored) to its onboarding step."""
    bare = path.split("?", 1)[0].rstrip("/") or "/"
    for step in OnboardingStep:
        if step.path == bare:
            return step
    return None


def get_next_step(step: OnboardingStep) -> OnboardingStep:
    """Step after `step`; complete is terminal."""
    if step == OnboardingStep.COMPLETE:
        return step
    return STEP_ORDER[step.index + 1]


def can_skip_step(step: OnboardingStep) -> bool:
    """Every selection step can be skipped; complete cannot."""
    return step != OnboardingStep.COMPLETE


@dataclass
class OnboardingUser:
    """
    Read-only projection of a user's onboarding progress.

    Mirrors the camelCase JSON served by GET /api/user/onboarding.
    """
    id: str
    email: str | None = None
    onboarding_step: OnboardingStep = OnboardingStep.INTERESTS
    onboarding_complete: bool = False
    interests: frozenset[str] = field(default_factory=frozenset)
    sub_interests: frozenset[str] = field(default_factory=frozenset)
    dealbreakers: frozenset[str] = field(default_factory=frozenset)

    def selections(self, category: Category) -> frozenset[str]:
        return {
            Category.INTERESTS: self.interests,
            Category.SUBCATEGORIES: self.sub_interests,
            Category.DEALBREAKERS: self.dealbreakers,
        }[category]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "onboardingStep": self.onboarding_step.value,
            "onboardingComplete": self.onboarding_complete,
            "interests": sorted(self.interests),
            "subInterests": sorted(self.sub_interests),
            "dealbreakers": sorted(self.dealbreakers),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OnboardingUser":
        step = data.get("onboardingStep") or OnboardingStep.INTERESTS.value
        complete = bool(data.get("onboardingComplete", False))
        return cls(
            id=data["id"],
            email=data.get("email"),
            onboarding_step=OnboardingStep.COMPLETE if complete else OnboardingStep(step),
            onboarding_complete=complete,
            interests=frozenset(data.get("interests") or []),
            sub_interests=frozenset(data.get("subInterests") or []),
            dealbreakers=frozenset(data.get("dealbreakers") or []),
        )


def is_step_complete(step: OnboardingStep, user: OnboardingUser | None) -> bool:
    """Whether the user's recorded data satisfies a step."""
    if user is None:
        return False
    if step == OnboardingStep.COMPLETE:
        return user.onboarding_complete
    category = STEP_CATEGORIES[step]
    size = len(user.selections(category))
    if category == Category.DEALBREAKERS:
        return SELECTION_BOUNDS[category].contains(size)
    return size >= SELECTION_BOUNDS[category].min


def next_incomplete_step(user: OnboardingUser | None) -> OnboardingStep | None:
    """First step whose data is missing; None for finished users."""
    if user is None:
        return OnboardingStep.INTERESTS
    if user.onboarding_complete:
        return None
    for step in STEP_ORDER:
        if not is_step_complete(step, user):
            return step
    return None


def completion_progress(user: OnboardingUser | None) -> dict[str, int]:
    """Completed/total step counts plus a rounded percentage."""
    total = len(STEP_ORDER)
    if user is None:
        return {"completed": 0, "total": total, "percentage": 0}
    completed = sum(1 for step in STEP_ORDER if is_step_complete(step, user))
    return {
        "completed": completed,
        "total": total,
        "percentage": round(completed / total * 100),
    }
