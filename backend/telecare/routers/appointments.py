from datetime import date
from typing import Optional

from fastapi import APIRouter, Query

from telecare.deps import CurrentDoctor, CurrentUser, PatientUser
from telecare.models import Doctor, Medication, TimeSlot, User
from telecare.schemas import (
    AppointmentOut,
    AppointmentRequestIn,
    CompleteIn,
    DeclineIn,
    DoctorOut,
    NotesIn,
    PrescriptionIn,
)
from telecare.services import appointment_service
from telecare.utils.logger import get_logger

logger = get_logger("appointments_router")

router = APIRouter(prefix="/appointments", tags=["appointments"])


def _one(appointment, message: str) -> dict:
    return {"success": True, "message": message, "appointment": AppointmentOut.from_document(appointment)}


@router.post("/request", status_code=201)
async def request_appointment(payload: AppointmentRequestIn, current: User = PatientUser):
    """طلب موعد استشارة جديد (للمريض فقط)."""
    appointment = await appointment_service.request_appointment(
        patient=current,
        doctor_id=payload.doctorId,
        appointment_date=payload.appointmentDate,
        time_slot=TimeSlot(start=payload.timeSlot.start, end=payload.timeSlot.end),
        type=payload.type.value,
        mode=payload.mode.value if payload.mode else None,
        notes=payload.notes,
    )
    return _one(appointment, "Appointment request sent successfully")


@router.get("/patient")
async def my_appointments(current: User = PatientUser):
    appointments = await appointment_service.list_patient_appointments(patient_id=current.id)
    return {"success": True, "appointments": [AppointmentOut.from_document(a) for a in appointments]}


@router.get("/doctor")
async def doctor_requests(doctor: Doctor = CurrentDoctor):
    """طلبات المواعيد الواردة للطبيب (بانتظار القبول أو الرفض)."""
    appointments = await appointment_service.list_doctor_requests(doctor_id=doctor.id)
    return {"success": True, "appointments": [AppointmentOut.from_document(a) for a in appointments]}


@router.get("/doctor/pending")
async def doctor_pending(doctor: Doctor = CurrentDoctor):
    return await doctor_requests(doctor)


def _many(appointments) -> dict:
    return {
        "success": True,
        "count": len(appointments),
        "appointments": [AppointmentOut.from_document(a) for a in appointments],
    }


@router.get("/doctor/today")
async def doctor_today(doctor: Doctor = CurrentDoctor):
    """مواعيد اليوم (بتوقيت العيادة)."""
    return _many(await appointment_service.list_doctor_today(doctor_id=doctor.id))


@router.get("/doctor/upcoming")
async def doctor_upcoming(day: Optional[date] = Query(None, alias="date"), doctor: Doctor = CurrentDoctor):
    return _many(await appointment_service.list_doctor_upcoming(doctor_id=doctor.id, day=day))


@router.get("/doctor/history")
async def doctor_history(day: Optional[date] = Query(None, alias="date"), doctor: Doctor = CurrentDoctor):
    return _many(await appointment_service.list_doctor_history(doctor_id=doctor.id, day=day))


@router.get("/doctors")
async def available_doctors(
    specialization: Optional[str] = Query(None),
    current: User = CurrentUser,
):
    doctors = await appointment_service.list_available_doctors(specialization=specialization)
    return {"success": True, "doctors": [DoctorOut.from_document(d) for d in doctors]}


@router.put("/accept/{appointment_id}")
async def accept(appointment_id: str, doctor: Doctor = CurrentDoctor):
    appointment = await appointment_service.accept_appointment(appointment_id=appointment_id, doctor=doctor)
    return _one(appointment, "Appointment confirmed")


@router.put("/decline/{appointment_id}")
async def decline(appointment_id: str, payload: Optional[DeclineIn] = None, doctor: Doctor = CurrentDoctor):
    appointment = await appointment_service.decline_appointment(
        appointment_id=appointment_id,
        doctor=doctor,
        reason=payload.reason if payload else None,
    )
    return _one(appointment, "Appointment declined")


@router.put("/cancel/{appointment_id}")
async def cancel(appointment_id: str, current: User = PatientUser):
    appointment = await appointment_service.cancel_appointment(appointment_id=appointment_id, patient=current)
    return _one(appointment, "Appointment cancelled")


@router.put("/complete/{appointment_id}")
async def complete(appointment_id: str, payload: Optional[CompleteIn] = None, doctor: Doctor = CurrentDoctor):
    appointment = await appointment_service.complete_appointment(
        appointment_id=appointment_id,
        doctor=doctor,
        details=payload.notes if payload else None,
    )
    return _one(appointment, "Appointment completed")


@router.put("/no-show/{appointment_id}")
async def no_show(appointment_id: str, doctor: Doctor = CurrentDoctor):
    appointment = await appointment_service.mark_no_show(appointment_id=appointment_id, doctor=doctor)
    return _one(appointment, "Appointment marked as no-show")


@router.put("/{appointment_id}/prescription")
async def prescription(appointment_id: str, payload: PrescriptionIn, doctor: Doctor = CurrentDoctor):
    """إضافة وصفة طبية للموعد."""
    appointment = await appointment_service.add_prescription(
        appointment_id=appointment_id,
        doctor=doctor,
        medications=[Medication(**m.model_dump()) for m in payload.medications],
        instructions=payload.instructions,
    )
    return _one(appointment, "Prescription saved")


@router.put("/{appointment_id}/notes")
async def consultation_notes(appointment_id: str, payload: NotesIn, doctor: Doctor = CurrentDoctor):
    appointment = await appointment_service.add_consultation_notes(
        appointment_id=appointment_id, doctor=doctor, notes=payload.notes
    )
    return _one(appointment, "Consultation notes added successfully")
