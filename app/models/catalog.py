from pydantic import BaseModel, Field
from typing import Optional, Dict, Any


class CrawlRunOut(BaseModel):
    status: str = Field(..., description="idle, running, completed or error")
    progress: int = Field(0, ge=0, le=100)
    message: str = ""
    result: Optional[Dict[str, Any]] = None


class IngestTriggerResponse(BaseModel):
    success: bool
    message: str
    status: CrawlRunOut


class IngestStatusResponse(BaseModel):
    success: bool = True
    data: CrawlRunOut
