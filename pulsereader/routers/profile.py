from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from pulsereader.database import get_db
from pulsereader.dependencies import require_user
from pulsereader.schemas import Caller, ProfileCreate, ProfileUpdate
from pulsereader.services import profile_service

# A caller only ever sees their own profile, so there is no id in the path.
router = APIRouter(prefix="/api/v1/profile", tags=["profile"])


@router.get("")
async def get_profile(caller: Caller = Depends(require_user), db: AsyncSession = Depends(get_db)):
    return await profile_service.get_profile(db, caller, caller.user_id)


@router.post("", status_code=201)
async def create_profile(
    data: ProfileCreate,
    caller: Caller = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return await profile_service.create_profile(db, caller, caller.user_id, data)


@router.patch("")
async def update_profile(
    data: ProfileUpdate,
    caller: Caller = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return await profile_service.update_profile(db, caller, caller.user_id, data)


@router.delete("", status_code=204)
async def delete_profile(caller: Caller = Depends(require_user), db: AsyncSession = Depends(get_db)):
    await profile_service.delete_profile(db, caller, caller.user_id)
    return Response(status_code=204)
