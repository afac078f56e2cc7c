from dataclasses import dataclass

from beanie import PydanticObjectId as OID

from telecare.constants import ActorKind, Role
from telecare.errors import Forbidden, NotFound
from telecare.models import Appointment, Doctor, User


@dataclass(frozen=True)
class Actor:
    """Who is acting on an appointment.

    Doctors are identified by their Doctor id (what appointments reference),
    patients and admins by their User id.
    """
    id: OID
    kind: ActorKind
    user: User


async def get_doctor_for_user(user: User) -> Doctor:
    """Resolve the Doctor profile for the authenticated user."""
    doctor = await Doctor.find_one(Doctor.user_id == user.id)
    if not doctor:
        raise NotFound("Doctor profile not found")
    return doctor


async def resolve_actor(user: User) -> Actor:
    if user.role == Role.DOCTOR:
        doctor = await get_doctor_for_user(user)
        return Actor(id=doctor.id, kind=ActorKind.DOCTOR, user=user)
    if user.role == Role.ADMIN:
        return Actor(id=user.id, kind=ActorKind.ADMIN, user=user)
    return Actor(id=user.id, kind=ActorKind.PATIENT, user=user)


def is_party(appointment: Appointment, actor: Actor) -> bool:
    if actor.kind == ActorKind.DOCTOR:
        return appointment.doctor_id == actor.id
    if actor.kind == ActorKind.PATIENT:
        return appointment.patient_id == actor.id
    return False


def require_party(appointment: Appointment, actor: Actor, message: str) -> None:
    """Only the appointment's own doctor or patient may go further."""
    if not is_party(appointment, actor):
        raise Forbidden(message)
