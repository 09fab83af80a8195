from pydantic import BaseModel

from clinic_core.models.schedule_block import ScheduleBlockPublic


class BlockCheckResponse(BaseModel):
    blocked: bool
    reasons: list[str]
    blocks: list[ScheduleBlockPublic]
