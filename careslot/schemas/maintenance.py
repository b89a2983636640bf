from pydantic import BaseModel


class CleanupReport(BaseModel):
    proposals_expired: int = 0
    appointments_confirmed: int = 0
    appointments_superseded: int = 0
    slots_deleted: int = 0
