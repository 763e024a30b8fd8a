"""Shared plumbing for domain aggregates."""

from datetime import datetime, timezone
from typing import Any, ClassVar, Self, TypeVar
from uuid import uuid4

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def normalize_tag(tag: str) -> str:
    return tag.strip().lower()


def parse_model(model: type[ModelT], data: Any) -> ModelT:
    """Build a model from caller data; shape errors become ValidationError."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        raise ValidationError(
            f"Invalid {model.__name__}: {', '.join(fields)}",
            errors=e.errors(include_url=False, include_context=False, include_input=False),
        ) from e


class AggregateState(BaseModel):
    """Fields every aggregate snapshot carries."""

    model_config = ConfigDict(use_enum_values=False)

    id: str = Field(default_factory=new_id)
    revision: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Aggregate:
    """Base for mutable aggregates.

    State lives in a private pydantic model and only changes through the
    subclass's guarded methods. ``revision`` increases on every accepted
    mutation and is the optimistic-concurrency token checked by snapshot
    stores on save.
    """

    state_model: ClassVar[type[AggregateState]] = AggregateState

    def __init__(self, state: AggregateState):
        self._state = state

    @property
    def id(self) -> str:
        return self._state.id

    @property
    def revision(self) -> int:
        return self._state.revision

    @property
    def created_at(self) -> datetime:
        return self._state.created_at

    @property
    def updated_at(self) -> datetime:
        return self._state.updated_at

    def _touch(self) -> None:
        self._state.updated_at = utcnow()
        self._state.revision += 1

    def to_persistence(self) -> dict[str, Any]:
        """JSON-safe snapshot of the full aggregate state."""
        return self._state.model_dump(mode="json")

    @classmethod
    def from_persistence(cls, snapshot: dict[str, Any]) -> Self:
        return cls(cls.state_model.model_validate(snapshot))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, type(self)):
            return NotImplemented
        return self._state == other._state

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id} rev={self.revision}>"
