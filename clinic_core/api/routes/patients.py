from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_core.api.deps import get_session
from clinic_core.models.appointment import AppointmentPublic
from clinic_core.models.patient import PatientCreate, PatientPublic
from clinic_core.services.appointment_service import list_by_patient
from clinic_core.services.patient_service import (
    deactivate_patient,
    get_patient,
    get_patient_by_document,
    register_patient,
)

router = APIRouter(prefix="/patients", tags=["patients"])


@router.post("", response_model=PatientPublic, status_code=status.HTTP_201_CREATED)
async def register(body: PatientCreate, session: AsyncSession = Depends(get_session)):
    return await register_patient(session, body)


@router.get("/by-document/{document_number}", response_model=PatientPublic)
async def by_document(document_number: str, session: AsyncSession = Depends(get_session)):
    patient = await get_patient_by_document(session, document_number)
    if not patient:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active patient with this document")
    return patient


@router.get("/{patient_id}", response_model=PatientPublic)
async def read_patient(patient_id: int, session: AsyncSession = Depends(get_session)):
    return await get_patient(session, patient_id)


@router.post("/{patient_id}/deactivate", response_model=PatientPublic)
async def deactivate(patient_id: int, session: AsyncSession = Depends(get_session)):
    return await deactivate_patient(session, patient_id)


@router.get("/{patient_id}/appointments", response_model=list[AppointmentPublic])
async def patient_appointments(patient_id: int, session: AsyncSession = Depends(get_session)):
    return await list_by_patient(session, patient_id)
