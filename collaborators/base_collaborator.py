from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from pydantic import BaseModel, Field


class ActionResult(BaseModel):
    success: bool
    detail: Dict[str, Any] = Field(default_factory=dict)
    # A permanent failure (validation, 4xx) is not worth retrying
    permanent: bool = False
    error: Optional[str] = None

    @classmethod
    def ok(cls, **detail) -> "ActionResult":
        return cls(success=True, detail=detail)

    @classmethod
    def failed(cls, error: str, permanent: bool = False, **detail) -> "ActionResult":
        return cls(success=False, error=error, permanent=permanent, detail=detail)


class BaseCollaborator(ABC):
    """
    Performs the side effect of one mutating action kind. `snapshot` is the
    entity's current attributes and always carries the entity id under "id".
    Implementations must be safe to call again with the same arguments.
    """

    @abstractmethod
    async def execute(self, config: BaseModel, snapshot: Dict[str, Any]) -> ActionResult:
        pass
