"""GeminiModelClient: ModelClientPort backed by google-generativeai."""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import google.generativeai as genai

from minutes_pipeline.domain.models import GenerationConfig, ModelRequest, RawModelResponse
from minutes_pipeline.ports.model_client import ModelClientPort

logger = logging.getLogger(__name__)

AUTO_MODEL = "auto"
PREFERRED_MODELS = (
    "gemini-2.5-flash",
    "gemini-2.5-pro",
    "gemini-2.0-flash",
    "gemini-1.5-flash",
    "gemini-1.5-pro",
)


@dataclass(frozen=True)
class ClientConfig:
    """Everything the model client needs, fixed at pipeline start."""
    model_name: str
    api_key: str
    timeout_seconds: float = 600.0
    generation: GenerationConfig = GenerationConfig()


def select_model_name(available: Iterable[str], preferred: Iterable[str] = PREFERRED_MODELS) -> str:
    """Pick the first preferred model the API offers, else the first preference."""
    names = {name.split("/")[-1] for name in available}
    preferred = list(preferred)
    for candidate in preferred:
        if candidate in names:
            return candidate
    return preferred[0]


def resolve_client_config(
    model_name: str,
    api_key: str,
    timeout_seconds: float = 600.0,
) -> ClientConfig:
    """Build the immutable client config, resolving ``auto`` against the model list once."""
    if model_name != AUTO_MODEL:
        return ClientConfig(model_name=model_name, api_key=api_key, timeout_seconds=timeout_seconds)

    genai.configure(api_key=api_key)
    available = [
        m.name for m in genai.list_models()
        if "generateContent" in getattr(m, "supported_generation_methods", [])
    ]
    chosen = select_model_name(available)
    logger.info(f"Auto-selected model {chosen} from {len(available)} available")
    return ClientConfig(model_name=chosen, api_key=api_key, timeout_seconds=timeout_seconds)


class GeminiModelClient(ModelClientPort):
    def __init__(self, client_config: ClientConfig):
        if not client_config.api_key:
            raise ValueError("GEMINI_API_KEY is not set")
        self._config = client_config
        genai.configure(api_key=client_config.api_key)
        self._model = genai.GenerativeModel(client_config.model_name)

    def model_name(self) -> str:
        return self._config.model_name

    async def generate(self, request: ModelRequest) -> RawModelResponse:
        contents: list = []
        if request.inline_audio is not None:
            contents.append({
                "mime_type": request.inline_audio.mime_type,
                "data": request.inline_audio.data,
            })
        contents.extend(request.prompt_parts)

        gen = request.generation_config
        response = await self._model.generate_content_async(
            contents,
            generation_config=genai.GenerationConfig(
                max_output_tokens=gen.max_output_tokens,
                temperature=gen.temperature,
                top_p=gen.top_p,
                top_k=gen.top_k,
            ),
            request_options={"timeout": self._config.timeout_seconds},
        )
        text = self._response_text(response)
        logger.debug(f"Model returned {len(text)} chars")
        return RawModelResponse(text=text)

    @staticmethod
    def _response_text(response) -> str:
        # response.text raises ValueError when the candidate was blocked or empty.
        try:
            return response.text
        except ValueError as e:
            feedback: Optional[object] = getattr(response, "prompt_feedback", None)
            raise ValueError(f"Model returned no text: {e} (feedback={feedback})") from e
