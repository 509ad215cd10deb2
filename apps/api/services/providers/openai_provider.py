"""OpenAI vision-backed expertise providers."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Type

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel

from config import require_openai_api_key, settings
from services.errors import InvalidProviderResultError, ProviderError
from services.providers.base import BaseExpertiseProvider, ProviderAttachment

logger = logging.getLogger(__name__)

MAX_IMAGES_PER_CALL = 5


def get_openai_client() -> Optional[AsyncOpenAI]:
    """Get OpenAI client, handling placeholders."""
    try:
        api_key = require_openai_api_key()
    except ValueError:
        return None
    if api_key == "test-key":
        return None
    return AsyncOpenAI(api_key=api_key)


def extract_json_payload(raw_text: str) -> Dict[str, Any]:
    """Pull the outermost JSON object out of a model answer."""
    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start == -1 or end <= start:
        raise InvalidProviderResultError("Provider answer did not contain a JSON object")
    try:
        data = json.loads(raw_text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise InvalidProviderResultError(f"Provider answer is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidProviderResultError("Provider answer JSON is not an object")
    return data


def _describe_vehicle(vehicle_info: Dict[str, Any]) -> str:
    parts = []
    for key in ("make", "model", "year", "plate", "mileage", "vin", "fuel_type", "transmission"):
        value = vehicle_info.get(key)
        if value not in (None, ""):
            parts.append(f"{key}: {value}")
    return "\n".join(parts) or "No vehicle details provided."


class OpenAIExpertiseProvider(BaseExpertiseProvider):
    """Sends vehicle details plus image attachments to a vision chat model and expects JSON back."""

    def __init__(
        self,
        *,
        service_type: str,
        result_model: Type[BaseModel],
        system_prompt: str,
        model: Optional[str] = None,
    ) -> None:
        self.service_type = service_type
        self.result_model = result_model
        self.system_prompt = system_prompt
        self.model = model or settings.OPENAI_MODEL

    def _build_user_message(
        self,
        attachments: Sequence[ProviderAttachment],
        vehicle_info: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        images = [a for a in attachments if a.kind == "image"][:MAX_IMAGES_PER_CALL]
        audio = [a for a in attachments if a.kind == "audio"]
        text = f"Vehicle:\n{_describe_vehicle(vehicle_info)}"
        if audio:
            listing = "\n".join(
                f"- {a.uri} ({a.mime_type or 'audio'}, {a.size_bytes or 0} bytes)" for a in audio
            )
            text += f"\n\nEngine recordings:\n{listing}"
        if images:
            text += "\n\nVehicle photos follow."
        parts: List[Dict[str, Any]] = [{"type": "text", "text": text}]
        for image in images:
            parts.append({"type": "image_url", "image_url": {"url": image.uri}})
        return parts

    async def analyze(
        self,
        attachments: Sequence[ProviderAttachment],
        vehicle_info: Dict[str, Any],
    ) -> Dict[str, Any]:
        client = get_openai_client()
        if client is None:
            raise ProviderError("OpenAI provider is not configured (OPENAI_API_KEY missing)")

        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": self._build_user_message(attachments, vehicle_info)},
                ],
                response_format={"type": "json_object"},
                max_tokens=2000,
            )
        except OpenAIError as exc:
            raise ProviderError(f"OpenAI request failed: {exc}") from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise InvalidProviderResultError("OpenAI returned an empty answer")
        return extract_json_payload(content)
