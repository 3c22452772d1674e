"""
Extraction adapter.

Turns a capture payload into a validated list of candidate memories with
exactly one call to the language-model service. Nothing the service
returns reaches the pipeline unless it matches CandidateMemory.
"""
import json
from dataclasses import dataclass
from typing import Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from ember.config import settings
from ember.errors import PermanentExtractionError
from ember.ingest.prompts import EXTRACTION_PROMPT, EXTRACTION_SYSTEM, VISION_PROMPT
from ember.llm.openai_client import get_chat_completion, get_vision_completion
from ember.logging import logger
from ember.models.memory import MemoryCategory

MAX_CANDIDATES = 50


class CandidateMemory(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    factual_content: str = Field(min_length=1)
    emotional_significance: Optional[str] = None
    category: MemoryCategory
    importance: int = Field(ge=1, le=5)
    verbatim_text: str = Field(min_length=1)


class ExtractionResponse(BaseModel):
    memories: list[CandidateMemory] = Field(min_length=1, max_length=MAX_CANDIDATES)


class ExtractionPayload(BaseModel):
    """What the adapter needs from a capture: its text or its screenshots."""
    text: Optional[str] = None
    image_urls: Optional[list[str]] = None

    @model_validator(mode="after")
    def exactly_one_modality(self):
        if bool(self.text) == bool(self.image_urls):
            raise ValueError("Provide either text or image_urls, not both or neither")
        return self


@dataclass(frozen=True)
class ExtractionOk:
    candidates: list[CandidateMemory]


@dataclass(frozen=True)
class SchemaError:
    message: str


ExtractionResult = Union[ExtractionOk, SchemaError]


def _strip_code_fence(raw: str) -> str:
    cleaned = raw.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    if cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_extraction(raw: Optional[str]) -> ExtractionResult:
    """Validate the raw service response against the candidate schema."""
    if not raw or not raw.strip():
        return SchemaError("Extraction service returned an empty response")
    try:
        data = json.loads(_strip_code_fence(raw))
    except json.JSONDecodeError as e:
        return SchemaError(f"Extraction response is not valid JSON: {e}")
    try:
        response = ExtractionResponse.model_validate(data)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        return SchemaError(f"Extraction response failed validation: {errors}")
    return ExtractionOk(response.memories)


def check_text_bounds(text: str) -> Optional[str]:
    """Return a reason the text cannot be extracted from, or None if it is usable."""
    length = len(text.strip())
    if length < settings.MIN_CAPTURE_CHARS:
        return f"Text is too short to contain a memory ({length} < {settings.MIN_CAPTURE_CHARS} characters)"
    if length > settings.MAX_CAPTURE_CHARS:
        return f"Text exceeds {settings.MAX_CAPTURE_CHARS} characters"
    return None


def check_image_bounds(image_urls: list[str]) -> Optional[str]:
    if not image_urls:
        return "At least one screenshot is required"
    if len(image_urls) > settings.MAX_SCREENSHOTS:
        return f"At most {settings.MAX_SCREENSHOTS} screenshots per capture"
    return None


class Extractor(Protocol):
    def extract(self, payload: ExtractionPayload) -> list[CandidateMemory]:
        ...


class OpenAIExtractor:
    """Default extractor: JSON-mode chat call for text, vision call for screenshots."""

    def __init__(self, text_model: Optional[str] = None, vision_model: Optional[str] = None):
        self.text_model = text_model or settings.OPENAI_MODEL_EXTRACTION
        self.vision_model = vision_model or settings.OPENAI_MODEL_VISION

    def extract(self, payload: ExtractionPayload) -> list[CandidateMemory]:
        if payload.image_urls:
            problem = check_image_bounds(payload.image_urls)
            if problem:
                raise PermanentExtractionError(problem)
            logger.info(f"Extracting memories from {len(payload.image_urls)} screenshot(s)")
            raw = get_vision_completion(
                payload.image_urls,
                VISION_PROMPT,
                system_prompt=EXTRACTION_SYSTEM,
                model=self.vision_model,
            )
        else:
            problem = check_text_bounds(payload.text or "")
            if problem:
                raise PermanentExtractionError(problem)
            logger.info(f"Extracting memories from {len(payload.text)} characters of text")
            raw = get_chat_completion(
                EXTRACTION_PROMPT.format(conversation=payload.text),
                system_prompt=EXTRACTION_SYSTEM,
                json_mode=True,
                model=self.text_model,
            )

        result = parse_extraction(raw)
        if isinstance(result, SchemaError):
            logger.warning(result.message)
            raise PermanentExtractionError(result.message)

        logger.info(f"Extraction returned {len(result.candidates)} candidate(s)")
        return result.candidates
