from pydantic import BaseModel
from typing import Optional


class HealthResponse(BaseModel):
    status: str
    fhir_server_url: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
