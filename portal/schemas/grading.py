from pydantic import BaseModel
from typing import Optional

class GradeRequest(BaseModel):
    score: float
    feedback: Optional[str] = None
    status: Optional[str] = None
    expected_version: Optional[int] = None
