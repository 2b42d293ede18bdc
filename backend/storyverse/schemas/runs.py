from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, StrictInt
from uuid import UUID

class _CamelIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

class StartRunRequest(_CamelIn):
    story_id: UUID = Field(alias="storyId")

class ChooseRequest(_CamelIn):
    genre_key: str = Field(alias="genreKey", min_length=1, max_length=32)

class RateRequest(_CamelIn):
    node_id: UUID = Field(alias="nodeId")
    rating: StrictInt = Field(ge=1, le=5)

class UnlockRequest(_CamelIn):
    chapter_number: StrictInt = Field(alias="chapterNumber")

class RateResponse(BaseModel):
    ok: bool = True
    coinsAwarded: int

class FeedbackRequest(BaseModel):
    rating: StrictInt | None = Field(default=None, ge=1, le=5)
    feedback: str | None = None
