from pydantic import BaseModel


class CreateSlotRequest(BaseModel):
    provider_id: str
    date: str  # YYYY-MM-DD
    time: str  # HH:MM
    duration_minutes: int | None = None


class GenerateSlotsRequest(BaseModel):
    provider_id: str
    date: str  # YYYY-MM-DD
