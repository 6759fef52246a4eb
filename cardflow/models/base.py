import uuid
from typing import Any, Self

from pydantic import BaseModel


def new_id() -> str:
    return str(uuid.uuid4())


class Entity(BaseModel):
    """Pure data record. Changes go through evolve() so invariants are re-checked."""

    def evolve(self, **changes: Any) -> Self:
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)
