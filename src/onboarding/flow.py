"""
Onboarding Flow Controller.

Sequences interests -> subcategories -> deal-breakers -> complete, gates
forward navigation on each step's selection, and decides where a
navigation request should really land.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass

from .errors import SyncError, UnauthorizedError
from .gateway import ProfileStore
from .notifications import LoggingNotifier, Notifier
from .selection import Category, SelectionStore, ToggleResult
from .state import (
    ENTRY_PATHS,
    HOME_PATH,
    LOGIN_PATH,
    OnboardingStep,
    OnboardingUser,
    can_skip_step,
    get_next_step,
    step_for_path,
)
from .sync import ErrorKind, PersistResult, SyncEngine

logger = logging.getLogger(__name__)


# =============================================================================
# Route guard
# =============================================================================


@dataclass(frozen=True)
class RouteDecision:
    """Whether a navigation may proceed, and where to go instead."""
    allowed: bool
    redirect_to: str | None = None

    @classmethod
    def allow(cls) -> "RouteDecision":
        return cls(allowed=True)

    @classmethod
    def redirect(cls, path: str) -> "RouteDecision":
        return cls(allowed=False, redirect_to=path)


def resolve_route(user: OnboardingUser | None, path: str) -> RouteDecision:
    """
    Evaluate the onboarding guard for a requested path.

    - anonymous users may only see the entry pages; steps send them to login
    - finished users are sent home from every onboarding page but /complete
    - unfinished users can revisit earlier steps but not jump past their
      recorded step
    """
    bare = path.split("?", 1)[0].rstrip("/") or "/"
    step = step_for_path(bare)

    if step is None:
        if bare in ENTRY_PATHS and user is not None and user.onboarding_complete:
            return RouteDecision.redirect(HOME_PATH)
        return RouteDecision.allow()

    if user is None:
        return RouteDecision.redirect(LOGIN_PATH)

    if user.onboarding_complete:
        if step == OnboardingStep.COMPLETE:
            return RouteDecision.allow()
        return RouteDecision.redirect(HOME_PATH)

    if step.index > user.onboarding_step.index:
        return RouteDecision.redirect(user.onboarding_step.path)

    return RouteDecision.allow()


# =============================================================================
# Controller
# =============================================================================


@dataclass(frozen=True)
class StepTransition:
    """Outcome of advance/skip/complete."""
    allowed: bool
    from_step: OnboardingStep
    to_step: OnboardingStep
    result: PersistResult | None = None
    reason: str = ""

    @property
    def path(self) -> str:
        """Where the user should be after the call."""
        return self.to_step.path


class OnboardingFlowController:
    """
    Owns the three selection stores for one onboarding session.

    Collaborators are injected: the sync engine for selections, the profile
    store for step/completion writes, and a notifier for user-facing notices.
    """

    def __init__(
        self,
        engine: SyncEngine,
        profiles: ProfileStore,
        user: OnboardingUser | None = None,
        notifier: Notifier | None = None,
    ):
        self._engine = engine
        self._profiles = profiles
        self._notifier = notifier or LoggingNotifier()
        self.user = user
        self.current_step = user.onboarding_step if user else OnboardingStep.INTERESTS
        self.stores = {
            category: SelectionStore(category, notifier=self._notifier) for category in Category
        }

    def store(self, category: Category) -> SelectionStore:
        return self.stores[category]

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def refresh_user(self) -> OnboardingUser:
        """Re-read the profile projection."""
        self.user = await self._profiles.fetch_profile()
        self.current_step = self.user.onboarding_step
        return self.user

    async def load(self, step: OnboardingStep) -> SelectionStore | None:
        """Hydrate the store for a step from the server."""
        category = step.category
        if category is None:
            return None
        store = self.stores[category]
        try:
            ids = await self._engine.hydrate(category)
        except SyncError as e:
            logger.warning(f"Could not load saved {category.value}: {e}")
            self._notifier.warn(f"Couldn't load your saved {category.label}.")
            return store
        store.replace(ids)
        return store

    def guard(self, path: str) -> RouteDecision:
        return resolve_route(self.user, path)

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    def toggle(self, category: Category, item_id: str) -> ToggleResult:
        """
        Flip one selection and schedule a background save.

        Returns immediately; the save runs on the event loop.
        """
        store = self.stores[category]
        result = store.toggle(item_id)
        if result in (ToggleResult.ADDED, ToggleResult.REMOVED):
            task = self._engine.schedule(category, store.selected)
            task.add_done_callback(self._on_background_save)
        return result

    def can_advance(self, step: OnboardingStep) -> bool:
        """Gate predicate for leaving `step` forwards."""
        category = step.category
        if category is None:
            return False
        return self.stores[category].can_advance()

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def advance(self, step: OnboardingStep) -> StepTransition:
        """
        Move forward from `step` if its selection is valid.

        Saves the final selection first. Only validation and auth failures
        block; a network failure keeps the local picks and moves on.
        """
        if not self.can_advance(step):
            return StepTransition(False, step, step, reason="selection incomplete")

        category = step.category
        result = await self._engine.persist(category, self.stores[category].selected)

        if result.is_err and result.error_kind in (ErrorKind.VALIDATION, ErrorKind.AUTH):
            self._notifier.error(f"Couldn't save your {category.label}: {result.message}")
            return StepTransition(False, step, step, result=result, reason=result.error_kind.value)
        if result.is_err:
            self._notifier.warn(f"We'll keep your {category.label} and try saving again later.")

        next_step = get_next_step(step)
        if next_step == OnboardingStep.COMPLETE:
            transition = await self.complete(from_step=step)
            return dataclasses.replace(transition, result=result)

        if not await self._record_step(next_step):
            return StepTransition(False, step, step, result=result, reason="auth")

        return StepTransition(True, step, next_step, result=result)

    async def skip(self, step: OnboardingStep) -> StepTransition:
        """
        Advance without checking the gate.

        Forward progress is still recorded on the profile.
        """
        if not can_skip_step(step):
            return StepTransition(False, step, step, reason="cannot skip")

        logger.info(f"Skipping onboarding step {step.value}")
        next_step = get_next_step(step)
        if next_step == OnboardingStep.COMPLETE:
            return await self.complete(from_step=step)

        if not await self._record_step(next_step):
            return StepTransition(False, step, step, reason="auth")
        return StepTransition(True, step, next_step)

    async def complete(self, from_step: OnboardingStep = OnboardingStep.DEAL_BREAKERS) -> StepTransition:
        """
        Mark onboarding finished in one profile write.

        Does not check the deal-breakers gate: `advance` reaches it only after
        the gate passes, `skip` on purpose without it. On failure nothing
        changes locally and the error is surfaced.
        """
        try:
            user = await self._profiles.update_profile(step=OnboardingStep.COMPLETE, complete=True)
        except SyncError as e:
            logger.error(f"Completing onboarding failed: {e}")
            self._notifier.error("Couldn't finish setting up your account. Please try again.")
            return StepTransition(False, from_step, from_step, reason=str(e))

        self.user = user
        self.current_step = OnboardingStep.COMPLETE
        self._notifier.success("You're all set!")
        return StepTransition(True, from_step, OnboardingStep.COMPLETE)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _record_step(self, step: OnboardingStep) -> bool:
        """Persist forward progress. False only when the session is gone."""
        recorded = self.user.onboarding_step if self.user else self.current_step
        if step.index <= recorded.index:
            self.current_step = step
            return True

        try:
            self.user = await self._profiles.update_profile(step=step)
        except UnauthorizedError as e:
            logger.warning(f"Recording step {step.value} rejected: {e}")
            self._notifier.error("Your session has expired. Please log in again.")
            return False
        except SyncError as e:
            logger.warning(f"Recording step {step.value} failed: {e}")
            if self.user is not None:
                self.user = dataclasses.replace(self.user, onboarding_step=step)

        self.current_step = step
        return True

    def _on_background_save(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background save crashed: {error!r}", exc_info=error)
            self._notifier.warn("We couldn't save your latest change. We'll try again when you continue.")
            return
        result = task.result()
        if not result.is_err:
            return
        if result.error_kind == ErrorKind.NETWORK:
            self._notifier.warn(f"We'll keep your {result.category.label} and try saving again later.")
        else:
            self._notifier.error(f"Couldn't save your {result.category.label}: {result.message}")
