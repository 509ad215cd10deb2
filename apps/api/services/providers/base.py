"""Expertise provider contract and registry."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from services.errors import InvalidProviderResultError


@dataclass(frozen=True)
class ProviderAttachment:
    kind: str  # image, audio
    uri: str
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None


class BaseExpertiseProvider(ABC):
    """One analysis capability. Implementations are slow and untrusted."""

    service_type: str
    result_model: Type[BaseModel]

    @abstractmethod
    async def analyze(
        self,
        attachments: Sequence[ProviderAttachment],
        vehicle_info: Dict[str, Any],
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def validate_result(self, raw: Any) -> Dict[str, Any]:
        """Check a raw provider answer against the service's result contract."""
        if not isinstance(raw, dict) or not raw:
            raise InvalidProviderResultError(f"{self.service_type} provider returned an empty or non-object result")
        try:
            parsed = self.result_model.model_validate(raw)
        except PydanticValidationError as exc:
            missing: List[str] = [".".join(str(part) for part in err["loc"]) for err in exc.errors()]
            raise InvalidProviderResultError(
                f"{self.service_type} result failed validation: {', '.join(missing)}"
            ) from exc
        return parsed.model_dump(mode="json")
