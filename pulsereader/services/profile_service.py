"""
Profile service: per-user personalization settings.

Ownership is checked here rather than left to database policies: every
public function takes the calling identity and refuses to touch a
profile that belongs to someone else.  ``find_profile`` is the internal,
unchecked reader the article service uses after the router has already
bound the caller to their own user id.
"""
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pulsereader.exceptions import (
    AuthenticationRequired,
    DatabaseError,
    Forbidden,
    ProfileAlreadyExists,
    ProfileNotFound,
)
from pulsereader.models import Profile
from pulsereader.schemas import Caller, ProfileCreate, ProfileUpdate
from pulsereader.services._store import is_unique_violation, isoformat, store_errors


def _profile_to_dict(profile: Profile) -> dict:
    return {
        "id": str(profile.id),
        "userId": str(profile.user_id),
        "mood": profile.mood.value if profile.mood else None,
        "blocklist": list(profile.blocklist or []),
        "personalizationEnabled": profile.personalization_enabled,
        "createdAt": isoformat(profile.created_at),
        "updatedAt": isoformat(profile.updated_at),
    }


def _authorize(caller: Caller, user_id: uuid.UUID) -> None:
    if caller.user_id is None:
        raise AuthenticationRequired()
    if caller.user_id != user_id:
        raise Forbidden("Profiles can only be managed by their owner")


async def find_profile(db: AsyncSession, user_id: uuid.UUID) -> Profile | None:
    """Return the profile row for *user_id*, or None when there is none."""
    with store_errors("fetch profile"):
        result = await db.execute(select(Profile).where(Profile.user_id == user_id))
        return result.scalar_one_or_none()


async def get_profile(db: AsyncSession, caller: Caller, user_id: uuid.UUID) -> dict:
    _authorize(caller, user_id)
    profile = await find_profile(db, user_id)
    if profile is None:
        raise ProfileNotFound()
    return _profile_to_dict(profile)


async def create_profile(
    db: AsyncSession, caller: Caller, user_id: uuid.UUID, data: ProfileCreate
) -> dict:
    """Create the caller's profile; a second profile is a conflict."""
    _authorize(caller, user_id)
    if await find_profile(db, user_id) is not None:
        raise ProfileAlreadyExists()

    profile = Profile(
        user_id=user_id,
        mood=data.mood,
        blocklist=list(data.blocklist),
        personalization_enabled=data.personalization_enabled,
    )
    db.add(profile)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        if is_unique_violation(exc):
            raise ProfileAlreadyExists() from exc
        raise DatabaseError("Failed to create profile") from exc

    with store_errors("reload profile"):
        await db.refresh(profile)
    return _profile_to_dict(profile)


async def update_profile(
    db: AsyncSession, caller: Caller, user_id: uuid.UUID, data: ProfileUpdate
) -> dict:
    """
    Apply a partial update.  Only fields the client actually sent are
    written, so ``{"mood": null}`` clears the mood while ``{}`` leaves it.
    """
    _authorize(caller, user_id)
    profile = await find_profile(db, user_id)
    if profile is None:
        raise ProfileNotFound()

    changes = data.model_dump(exclude_unset=True)
    if not changes:
        return _profile_to_dict(profile)

    for field, value in changes.items():
        setattr(profile, field, list(value) if field == "blocklist" else value)

    with store_errors("update profile"):
        await db.commit()
        await db.refresh(profile)
    return _profile_to_dict(profile)


async def delete_profile(db: AsyncSession, caller: Caller, user_id: uuid.UUID) -> None:
    _authorize(caller, user_id)
    profile = await find_profile(db, user_id)
    if profile is None:
        raise ProfileNotFound()
    with store_errors("delete profile"):
        await db.delete(profile)
        await db.commit()
