from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class APIError(BaseModel):
    error: str
    code: str


class OkResponse(BaseModel):
    ok: bool = True


class ListResponse(BaseModel, Generic[T]):
    items: list[T]


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)
