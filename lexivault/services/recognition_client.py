"""Recognition client: page text extraction, embeddings and outline generation."""
import asyncio
import base64
import json
import os
import time
from typing import Any, Awaitable, List, Optional, TypeVar

import httpx
from openai import AsyncOpenAI
from pydantic import ValidationError as PydanticValidationError

from lexivault.exceptions import (
    EmbeddingError,
    EmptyExtractionError,
    RecognitionError,
    RecognitionResponseError,
    RecognitionTimeoutError,
)
from lexivault.models.outline import OutlineAdapter, OutlineItem
from lexivault.services.embedding_service import EmbeddingService
from lexivault.services.prompts import ExtractionPrompt, OutlinePrompt
from lexivault.utils.logger import logger
from lexivault.utils.pdf_tools import PDF_CONTENT_TYPE, render_page_png
from lexivault.utils.text_cleaner import clean_text, strip_code_fences

T = TypeVar("T")

DEFAULT_API_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
IMAGE_CONTENT_TYPES = ("image/png", "image/jpeg", "image/webp")


def parse_outline(raw: str) -> List[OutlineItem]:
    """
    Validate an outline response against the strict item schema.

    Accepts a bare JSON array, optionally wrapped in a Markdown code fence,
    or an object holding the array under a single key.

    Raises:
        RecognitionResponseError: If the response is not parseable, does not
            match the schema, or is empty
    """
    payload = strip_code_fences(raw or "")
    if not payload:
        raise RecognitionResponseError("Outline response is empty")

    try:
        data: Any = json.loads(payload)
    except json.JSONDecodeError as e:
        raise RecognitionResponseError(f"Outline response is not valid JSON: {str(e)}") from e

    if isinstance(data, dict):
        lists = [value for value in data.values() if isinstance(value, list)]
        if len(lists) != 1:
            raise RecognitionResponseError("Outline response object does not hold a single item list")
        data = lists[0]

    try:
        items = OutlineAdapter.validate_python(data)
    except PydanticValidationError as e:
        raise RecognitionResponseError(f"Outline response does not match schema: {str(e)}") from e

    if not items:
        raise RecognitionResponseError("Outline response contains no items")
    return items


class RecognitionClient:
    """Uniform async interface to the external recognition and embedding services."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        api_key: Optional[str] = None,
        api_url: str = DEFAULT_API_URL,
        extraction_model: str = "gemini-2.5-flash",
        outline_model: str = "gemini-2.5-flash",
        timeout_seconds: float = 120.0,
        render_dpi: int = 200,
    ):
        """
        Initialize recognition client.

        Args:
            embedding_service: Service producing fixed-length text vectors
            api_key: API key for the OpenAI-compatible endpoint (from env if not provided)
            api_url: Base URL of the OpenAI-compatible endpoint
            extraction_model: Vision model used for page transcription
            outline_model: Text model used for outline generation
            timeout_seconds: Upper bound for every recognition call
            render_dpi: Resolution used to rasterise PDF pages
        """
        self.api_key = api_key or os.getenv("RECOGNITION_API_KEY")
        if not self.api_key:
            raise ValueError("RECOGNITION_API_KEY environment variable is required")

        self.embedding_service = embedding_service
        self.api_url = api_url
        self.extraction_model = extraction_model
        self.outline_model = outline_model
        self.timeout_seconds = timeout_seconds
        self.render_dpi = render_dpi

        http_client = httpx.AsyncClient(timeout=timeout_seconds)
        self.client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=api_url,
            http_client=http_client,
        )

    async def _bounded(self, awaitable: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise RecognitionTimeoutError(
                f"{operation} timed out after {self.timeout_seconds:.0f}s"
            ) from e
        except RecognitionError:
            raise
        except Exception as e:
            raise RecognitionError(f"{operation} failed: {str(e)}") from e

    async def _to_image(self, page_bytes: bytes, content_type: str) -> tuple:
        if content_type == PDF_CONTENT_TYPE:
            png = await asyncio.to_thread(render_page_png, page_bytes, self.render_dpi)
            return png, "image/png"
        if content_type in IMAGE_CONTENT_TYPES:
            return page_bytes, content_type
        raise RecognitionError(f"Unsupported page content type: {content_type}")

    @staticmethod
    def _message_text(response: Any) -> str:
        if not getattr(response, "choices", None):
            raise RecognitionResponseError("Recognition response has no choices")
        return response.choices[0].message.content or ""

    async def extract_text(self, page_bytes: bytes, content_type: str = PDF_CONTENT_TYPE) -> str:
        """
        Transcribe one page into normalized structured Markdown.

        Args:
            page_bytes: Single-page PDF or page image
            content_type: MIME type of page_bytes

        Returns:
            Extracted Markdown text

        Raises:
            EmptyExtractionError: If the service returns no text
            RecognitionError: On transport, timeout or format failures
        """
        start_time = time.time()
        image_bytes, mime_type = await self._to_image(page_bytes, content_type)
        data_uri = f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"

        response = await self._bounded(
            self.client.chat.completions.create(
                model=self.extraction_model,
                messages=[
                    {"role": "system", "content": ExtractionPrompt.SYSTEM_MESSAGE},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": ExtractionPrompt.INSTRUCTIONS},
                            {"type": "image_url", "image_url": {"url": data_uri}},
                        ],
                    },
                ],
                temperature=0.1,
            ),
            "Text extraction",
        )

        text = clean_text(strip_code_fences(self._message_text(response)))
        if not text:
            raise EmptyExtractionError("No text extracted from page")

        logger.debug(
            f"Extracted {len(text)} chars",
            extra={"response_time_ms": (time.time() - start_time) * 1000},
        )
        return text

    async def embed(self, text: str) -> List[float]:
        """
        Produce the fixed-length vector for a text.

        Raises:
            EmbeddingError: If embedding fails or returns an empty vector
        """
        try:
            vector = await self._bounded(
                asyncio.to_thread(self.embedding_service.generate_embedding, text),
                "Embedding",
            )
        except RecognitionTimeoutError:
            raise
        except RecognitionError as e:
            raise EmbeddingError(str(e)) from e

        if not vector:
            raise EmbeddingError("Embedding service returned an empty vector")
        return vector

    async def generate_outline(self, document_text: str) -> List[OutlineItem]:
        """
        Request a hierarchical outline for concatenated page text.

        Returns:
            Validated outline items in reading order

        Raises:
            RecognitionResponseError: If the response is malformed or empty
            RecognitionError: On transport or timeout failures
        """
        response = await self._bounded(
            self.client.chat.completions.create(
                model=self.outline_model,
                messages=[
                    {"role": "system", "content": OutlinePrompt.SYSTEM_MESSAGE},
                    {"role": "user", "content": OutlinePrompt.build(document_text)},
                ],
                temperature=0.1,
            ),
            "Outline generation",
        )
        return parse_outline(self._message_text(response))

    async def close(self):
        """Close HTTP client."""
        await self.client.close()
