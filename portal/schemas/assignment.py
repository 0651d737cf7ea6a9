from pydantic import BaseModel, Field
from typing import List, Optional

class ToggleStatusRequest(BaseModel):
    is_active: bool

class InviteRequest(BaseModel):
    student_ids: List[int] = Field(default_factory=list)
    custom_message: Optional[str] = Field(default=None, max_length=2000)

class UninviteRequest(BaseModel):
    student_ids: List[int] = Field(default_factory=list)
    reason: Optional[str] = Field(default=None, max_length=1000)

class EmailMarksRequest(BaseModel):
    email: str
    columns: List[str] = Field(default_factory=list)
    file_format: str = Field(default="xlsx", alias="format")
    student_ids: Optional[List[int]] = None
