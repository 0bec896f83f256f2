from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class RoutingMappingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    target_branch_id: int
    source_department_id: int
    updated_at: datetime
