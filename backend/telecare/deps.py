from fastapi import Depends

from telecare.constants import Role
from telecare.models import Doctor, User
from telecare.security import get_current_user, require_roles
from telecare.services.actors import Actor, get_doctor_for_user, resolve_actor

# Common dependencies used across routers
CurrentUser = Depends(get_current_user)
PatientUser = Depends(require_roles([Role.PATIENT]))


async def get_current_doctor(user: User = Depends(require_roles([Role.DOCTOR]))) -> Doctor:
    """The Doctor profile behind the authenticated doctor account."""
    return await get_doctor_for_user(user)


async def get_current_actor(user: User = Depends(get_current_user)) -> Actor:
    return await resolve_actor(user)


CurrentDoctor = Depends(get_current_doctor)
CurrentActor = Depends(get_current_actor)
