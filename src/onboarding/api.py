"""
Onboarding API Endpoints.

User selection sets (replace-whole-set semantics), the onboarding profile
projection, and the public catalogs each step picks from.
"""

import dataclasses
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from supabase import Client

from klio.db.client import (
    SelectionTable,
    find_known_ids,
    get_authenticated_client,
    get_profile,
    get_selection_ids,
    get_service_client,
    list_catalog,
    replace_selection_ids,
    upsert_profile,
)
from klio.web.auth import AuthenticatedUser, get_current_user

from .selection import Category, clean_ids
from .state import OnboardingStep, OnboardingUser

logger = logging.getLogger(__name__)

router = APIRouter(tags=["onboarding"])


SELECTION_TABLES: dict[Category, SelectionTable] = {
    Category.INTERESTS: SelectionTable("user_interests", "interest_id", "interests"),
    Category.SUBCATEGORIES: SelectionTable("user_subcategories", "subcategory_id", "subcategories"),
    Category.DEALBREAKERS: SelectionTable("user_deal_breakers", "deal_breaker_id", "deal_breakers"),
}

# Singular nouns for error messages
_ITEM_NOUNS = {
    Category.INTERESTS: "interest",
    Category.SUBCATEGORIES: "subcategory",
    Category.DEALBREAKERS: "deal-breaker",
}


# =============================================================================
# Dependencies
# =============================================================================


def get_user_db(user: AuthenticatedUser = Depends(get_current_user)) -> Client:
    """Supabase client scoped to the caller (RLS applies)."""
    return get_authenticated_client(user.access_token)


def get_catalog_db() -> Client:
    """Catalog tables are public; read them with the service client."""
    return get_service_client()


# =============================================================================
# Request/Response Models
# =============================================================================


class SelectionsRequest(BaseModel):
    """Full desired selection set."""
    selections: list[str]


class SelectionsResponse(BaseModel):
    ok: bool = True
    message: str
    selections: list[str]


class OnboardingUpdateRequest(BaseModel):
    """Forward-only profile update."""
    model_config = ConfigDict(populate_by_name=True)

    onboarding_step: str | None = Field(default=None, alias="onboardingStep")
    onboarding_complete: bool | None = Field(default=None, alias="onboardingComplete")


# =============================================================================
# Helpers
# =============================================================================


async def _read_selections(category: Category, user: AuthenticatedUser, client: Client) -> dict:
    link = SELECTION_TABLES[category]
    try:
        ids = await get_selection_ids(client, link, user.id)
    except Exception as e:
        logger.error(f"Error fetching user {category.label}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to fetch {category.label}")

    return {category.response_key: ids, "count": len(ids)}


async def _save_selections(
    category: Category,
    request: SelectionsRequest,
    user: AuthenticatedUser,
    client: Client,
) -> SelectionsResponse:
    """
    Replace the user's set for a category.

    Every ID must exist in the catalog; an unchanged set is not rewritten.
    """
    link = SELECTION_TABLES[category]
    cleaned = clean_ids(request.selections)

    try:
        known = await find_known_ids(client, link.catalog, cleaned)
        existing = set(await get_selection_ids(client, link, user.id))
    except Exception as e:
        logger.error(f"Error validating {category.label} for {user.id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    if len(known) != len(cleaned):
        unknown = [item for item in cleaned if item not in known]
        logger.info(f"Rejected unknown {category.label} for {user.id}: {unknown}")
        raise HTTPException(
            status_code=400,
            detail=f"One or more {_ITEM_NOUNS[category]} IDs are invalid",
        )

    if existing == set(cleaned):
        return SelectionsResponse(message="No changes needed", selections=cleaned)

    try:
        await replace_selection_ids(client, link, user.id, cleaned)
        if category == Category.DEALBREAKERS:
            await upsert_profile(client, user.id, {"dealbreakers": cleaned})
    except Exception as e:
        logger.error(f"Error saving {category.label} for {user.id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to save {category.label}")

    logger.info(f"Saved {len(cleaned)} {category.label} for {user.id}")
    return SelectionsResponse(
        message=f"Successfully saved {len(cleaned)} {category.label}",
        selections=cleaned,
    )


async def _load_projection(user: AuthenticatedUser, client: Client) -> OnboardingUser:
    profile = await get_profile(client, user.id) or {}
    selections = {
        category: await get_selection_ids(client, link, user.id)
        for category, link in SELECTION_TABLES.items()
    }
    return OnboardingUser.from_dict({
        "id": user.id,
        "email": user.email,
        "onboardingStep": profile.get("onboarding_step") or OnboardingStep.INTERESTS.value,
        "onboardingComplete": bool(profile.get("onboarding_complete")),
        "interests": selections[Category.INTERESTS],
        "subInterests": selections[Category.SUBCATEGORIES],
        "dealbreakers": selections[Category.DEALBREAKERS],
    })


# =============================================================================
# Endpoints: User selections
# =============================================================================


@router.get("/user/interests")
async def get_user_interests(
    user: AuthenticatedUser = Depends(get_current_user),
    client: Client = Depends(get_user_db),
) -> dict:
    return await _read_selections(Category.INTERESTS, user, client)


@router.post("/user/interests", response_model=SelectionsResponse)
async def save_user_interests(
    request: SelectionsRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    client: Client = Depends(get_user_db),
) -> SelectionsResponse:
    return await _save_selections(Category.INTERESTS, request, user, client)


@router.get("/user/subcategories")
async def get_user_subcategories(
    user: AuthenticatedUser = Depends(get_current_user),
    client: Client = Depends(get_user_db),
) -> dict:
    return await _read_selections(Category.SUBCATEGORIES, user, client)


@router.post("/user/subcategories", response_model=SelectionsResponse)
async def save_user_subcategories(
    request: SelectionsRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    client: Client = Depends(get_user_db),
) -> SelectionsResponse:
    return await _save_selections(Category.SUBCATEGORIES, request, user, client)


@router.get("/user/deal-breakers")
async def get_user_deal_breakers(
    user: AuthenticatedUser = Depends(get_current_user),
    client: Client = Depends(get_user_db),
) -> dict:
    return await _read_selections(Category.DEALBREAKERS, user, client)


@router.post("/user/deal-breakers", response_model=SelectionsResponse)
async def save_user_deal_breakers(
    request: SelectionsRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    client: Client = Depends(get_user_db),
) -> SelectionsResponse:
    return await _save_selections(Category.DEALBREAKERS, request, user, client)


# =============================================================================
# Endpoints: Onboarding profile
# =============================================================================


@router.get("/user/onboarding")
async def get_onboarding_profile(
    user: AuthenticatedUser = Depends(get_current_user),
    client: Client = Depends(get_user_db),
) -> dict:
    """Current step, completion flag and saved selections."""
    try:
        projection = await _load_projection(user, client)
    except Exception as e:
        logger.error(f"Error loading onboarding profile for {user.id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load onboarding progress")
    return projection.to_dict()


@router.patch("/user/onboarding")
async def update_onboarding_profile(
    request: OnboardingUpdateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    client: Client = Depends(get_user_db),
) -> dict:
    """
    Advance the onboarding step and/or mark onboarding complete.

    Completion writes the flag and the "complete" step together. Steps never
    move backwards.
    """
    try:
        current = await _load_projection(user, client)
    except Exception as e:
        logger.error(f"Error loading onboarding profile for {user.id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load onboarding progress")

    updates: dict = {}

    if request.onboarding_step is not None:
        try:
            step = OnboardingStep(request.onboarding_step)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown onboarding step: {request.onboarding_step}")
        if step.index < current.onboarding_step.index:
            raise HTTPException(status_code=400, detail="Onboarding step cannot move backwards")
        updates["onboarding_step"] = step.value

    if request.onboarding_complete is not None:
        if not request.onboarding_complete and current.onboarding_complete:
            raise HTTPException(status_code=400, detail="Onboarding is already complete")
        if request.onboarding_complete:
            updates["onboarding_complete"] = True
            updates["onboarding_step"] = OnboardingStep.COMPLETE.value

    if updates.get("onboarding_step") == OnboardingStep.COMPLETE.value:
        updates["onboarding_complete"] = True

    if not updates:
        return current.to_dict()

    try:
        await upsert_profile(client, user.id, updates)
    except Exception as e:
        logger.error(f"Error updating onboarding profile for {user.id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update onboarding progress")

    logger.info(f"Onboarding profile for {user.id} updated: {updates}")
    step_value = updates.get("onboarding_step")
    updated = dataclasses.replace(
        current,
        onboarding_step=OnboardingStep(step_value) if step_value else current.onboarding_step,
        onboarding_complete=updates.get("onboarding_complete", current.onboarding_complete),
    )
    return updated.to_dict()


# =============================================================================
# Endpoints: Catalogs
# =============================================================================


@router.get("/interests")
async def get_interests_catalog(client: Client = Depends(get_catalog_db)) -> dict:
    try:
        rows = await list_catalog(client, "interests", "id, name", order="name")
    except Exception as e:
        logger.error(f"Error fetching interests: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    return {"interests": rows, "count": len(rows)}


@router.get("/subcategories")
async def get_subcategories_catalog(
    interests: str | None = Query(default=None, description="Comma-separated interest IDs"),
    client: Client = Depends(get_catalog_db),
) -> dict:
    """Subcategories, optionally limited to some interests."""
    parent_ids = clean_ids(interests.split(",")) if interests else []
    try:
        rows = await list_catalog(
            client,
            "subcategories",
            "id,label,interest_id",
            order="label",
            parent_column="interest_id",
            parent_ids=parent_ids,
        )
    except Exception as e:
        logger.error(f"Fetch subcategories error: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    return {"subcategories": rows}


@router.get("/deal-breakers")
async def get_deal_breakers_catalog(client: Client = Depends(get_catalog_db)) -> dict:
    try:
        rows = await list_catalog(client, "deal_breakers", "id, label, icon, category_id", order="label")
    except Exception as e:
        logger.error(f"Error fetching deal-breakers: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    return {"dealBreakers": rows, "count": len(rows)}
