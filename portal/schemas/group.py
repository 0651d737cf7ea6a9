from pydantic import BaseModel
from typing import List, Optional

class GroupCreate(BaseModel):
    assignment_id: int
    group_name: str
    members: List[int]

class GroupUpdate(BaseModel):
    group_name: Optional[str] = None
    members: Optional[List[int]] = None
