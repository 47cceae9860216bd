from typing import Optional
from pydantic import BaseModel

class UploadRequest(BaseModel):
    filename: Optional[str] = None
    content_type: Optional[str] = None
    url: Optional[str] = None
    data: Optional[str] = None

class UploadResult(BaseModel):
    filename: str
    content_type: str
    size: int = 0
    success: bool
    reason: str
