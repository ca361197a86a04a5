from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict


class Workflow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    name: str
    description: Optional[str] = None
    intent: Optional[str] = None
    trigger: Optional[Dict[str, Any]] = None
    actions: Optional[List[Dict[str, Any]]] = None
    active: bool = False
    pipedream_workflow_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class Execution(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    workflow_id: Optional[str]  # None once the workflow is deleted
    user_id: str
    status: str  # running | success | error
    input: Optional[Dict[str, Any]] = None
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None
    created_at: datetime

    @property
    def duration_ms(self) -> Optional[int]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at) // timedelta(milliseconds=1)
