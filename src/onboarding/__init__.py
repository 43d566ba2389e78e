"""
Klio Onboarding System.

Collects three selection sets before a user reaches the home surface:

1. Interests      - 3 to 6 broad categories
2. Subcategories  - 3 to 12 picks within the chosen interests
3. Deal-breakers  - 2 or 3 things a business must get right
4. Complete

The core (selection store, sync engine, flow controller) has no web
framework dependency; `onboarding.api` exposes the REST routes it talks to.
"""

from .flow import OnboardingFlowController, RouteDecision, StepTransition, resolve_route
from .selection import SELECTION_BOUNDS, Category, SelectionStore, ToggleResult
from .state import OnboardingStep, OnboardingUser
from .sync import NetworkMonitor, PersistOutcome, PersistResult, SyncEngine, SyncPolicy

__all__ = [
    "Category",
    "NetworkMonitor",
    "OnboardingFlowController",
    "OnboardingStep",
    "OnboardingUser",
    "PersistOutcome",
    "PersistResult",
    "RouteDecision",
    "SELECTION_BOUNDS",
    "SelectionStore",
    "StepTransition",
    "SyncEngine",
    "SyncPolicy",
    "ToggleResult",
    "resolve_route",
]
