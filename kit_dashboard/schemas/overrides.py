from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict


class CategoryOverrideRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    assetName: Optional[str] = None
    category: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    key: Optional[str] = None
    status: Optional[str] = None


class CuratedListsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    grip: Optional[List[Any]] = None
    video: Optional[List[Any]] = None
    lighting: Optional[List[Any]] = None
    sound: Optional[List[Any]] = None
