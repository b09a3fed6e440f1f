from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import google.auth as google_auth
import httpx
import requests
from google import genai
from google.auth.transport.requests import AuthorizedSession
from google.genai import errors as genai_errors
from google.genai import types
from google.oauth2 import service_account

from dailies import ssm
from dailies.errors import EmptyResult, GenerationJobError, StudioError, TransientProviderError

from .service import (
    GenerationHandle,
    GenerativeService,
    MediaPart,
    PollResult,
    ReferenceImage,
    VideoRequestConfig,
)
from .structured import load_structured

logger = logging.getLogger(__name__)

_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
_RETRYABLE_STATUS = {408, 429}


class GeminiStudioService(GenerativeService):
    """Gemini / Veo adapter built on the google-genai SDK."""

    def __init__(
        self,
        api_key: str | None = None,
        text_model: str = "gemini-3-pro-preview",
        image_model: str = "gemini-3-pro-image-preview",
        use_vertex: bool = False,
        project: str | None = None,
        location: str | None = None,
        credentials_path: Path | None = None,
        credentials_parameter: str | None = None,
        download_timeout: float = 60.0,
        client: genai.Client | None = None,
    ) -> None:
        self.api_key = api_key
        self.text_model = text_model
        self.image_model = image_model
        self.use_vertex = use_vertex
        self.project = project
        self.location = location or "us-central1"
        self.credentials_path = Path(credentials_path) if credentials_path else None
        self.credentials_parameter = credentials_parameter
        self.download_timeout = download_timeout
        self._credentials = None
        self.client = client or self._build_client()

    # GenerativeService ------------------------------------------------

    async def generate_text(
        self,
        prompt: str,
        schema: Dict[str, Any] | None = None,
        attachments: Sequence[MediaPart] = (),
    ) -> Dict[str, Any]:
        config_kwargs: Dict[str, Any] = {}
        if schema is not None:
            config_kwargs["response_mime_type"] = "application/json"
            config_kwargs["response_schema"] = schema
        contents = [types.Part.from_text(text=prompt)]
        contents.extend(types.Part.from_bytes(data=part.data, mime_type=part.mime_type) for part in attachments)
        response = await self._call(
            "text generation",
            self.client.aio.models.generate_content(
                model=self.text_model,
                contents=contents,
                config=types.GenerateContentConfig(**config_kwargs),
            ),
        )
        text = getattr(response, "text", None)
        if not text:
            raise EmptyResult("Text model returned an empty response")
        payload = load_structured(text)
        if not isinstance(payload, dict):
            raise EmptyResult("Text model did not return a JSON object")
        return payload

    async def generate_image(self, prompt: str, reference_images: Sequence[MediaPart] = ()) -> bytes:
        contents = [types.Part.from_text(text=prompt)]
        contents.extend(types.Part.from_bytes(data=part.data, mime_type=part.mime_type) for part in reference_images)
        response = await self._call(
            "image generation",
            self.client.aio.models.generate_content(
                model=self.image_model,
                contents=contents,
                config=types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
            ),
        )
        data = _first_inline_image(response)
        if not data:
            raise EmptyResult("Image model returned no image data")
        return data

    async def generate_video(
        self,
        prompt: str,
        reference_images: Sequence[ReferenceImage],
        config: VideoRequestConfig,
    ) -> GenerationHandle:
        config_kwargs: Dict[str, Any] = dict(
            number_of_videos=config.number_of_videos,
            aspect_ratio=config.aspect_ratio,
            resolution=config.resolution,
        )
        if config.duration_seconds:
            config_kwargs["duration_seconds"] = config.duration_seconds
        if reference_images:
            config_kwargs["reference_images"] = [
                types.VideoGenerationReferenceImage(
                    image=types.Image(image_bytes=ref.data, mime_type=ref.mime_type),
                    reference_type=ref.reference_type.value.upper(),
                )
                for ref in reference_images
            ]
        operation = await self._call(
            "video generation",
            self.client.aio.models.generate_videos(
                model=config.model,
                prompt=prompt,
                config=types.GenerateVideosConfig(**config_kwargs),
            ),
        )
        return GenerationHandle(name=getattr(operation, "name", "") or "", raw=operation)

    async def poll_operation(self, handle: GenerationHandle) -> PollResult:
        operation = handle.raw
        if not getattr(operation, "done", False):
            operation = await self._call("operation poll", self.client.aio.operations.get(operation=operation))
            handle.raw = operation
        if not operation.done:
            return PollResult(done=False)
        if operation.error:
            message = operation.error.get("message") if isinstance(operation.error, dict) else operation.error
            raise GenerationJobError(f"Generation job {handle.name} failed: {message or 'unknown API error'}")

        videos = getattr(operation.response, "generated_videos", None) or []
        video = getattr(videos[0], "video", None) if videos else None
        if video is None:
            logger.error("Generation job %s completed without a video (safety filter or quota?)", handle.name)
            return PollResult(done=True)
        media = getattr(video, "video_bytes", None)
        uri = getattr(video, "uri", None)
        if not media and uri:
            media = await asyncio.to_thread(self._download, uri)
        return PollResult(done=True, media=media or None, uri=uri)

    # Internal helpers -------------------------------------------------

    async def _call(self, label: str, awaitable: Any) -> Any:
        try:
            return await awaitable
        except genai_errors.APIError as exc:
            code = getattr(exc, "code", None) or 0
            if code in _RETRYABLE_STATUS or code >= 500:
                raise TransientProviderError(f"{label} throttled or unavailable ({code}): {exc}") from exc
            raise StudioError(f"{label} rejected ({code}): {exc}") from exc
        except (httpx.TransportError, requests.RequestException, ConnectionError, asyncio.TimeoutError) as exc:
            raise TransientProviderError(f"{label} failed: {exc}") from exc

    def _download(self, uri: str) -> bytes:
        try:
            if self.use_vertex:
                if self._credentials is None:
                    raise GenerationJobError(f"Cannot download {uri}; missing credentials")
                response = AuthorizedSession(self._credentials).get(uri, timeout=self.download_timeout)
            else:
                response = requests.get(uri, params={"key": self.api_key}, timeout=self.download_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise TransientProviderError(f"Failed to download generated video: {exc}") from exc
        logger.info("Downloaded generated video from %s", uri.split("?")[0])
        return response.content

    def _build_client(self) -> genai.Client:
        if self.use_vertex:
            return self._build_vertex_client()
        if not self.api_key:
            raise RuntimeError("Gemini API key is not configured")
        logger.info("Using Gemini API key authentication")
        return genai.Client(api_key=self.api_key)

    def _build_vertex_client(self) -> genai.Client:
        project = self.project
        if self.credentials_path and self.credentials_path.exists():
            logger.info("Loading Vertex credentials from %s", self.credentials_path)
            credentials = service_account.Credentials.from_service_account_file(
                str(self.credentials_path), scopes=[_SCOPE]
            )
            project = project or getattr(credentials, "project_id", None)
        elif self.credentials_parameter:
            logger.info("Loading Vertex credentials from SSM parameter %s", self.credentials_parameter)
            info = ssm.get_json_parameter(self.credentials_parameter)
            credentials = service_account.Credentials.from_service_account_info(info, scopes=[_SCOPE])
            project = project or info.get("project_id")
        else:
            logger.info("Falling back to application default credentials for Vertex")
            credentials, default_project = google_auth.default(scopes=[_SCOPE])
            project = project or default_project

        if not project:
            raise RuntimeError("Vertex AI configuration requires a project ID")
        self.project = project
        self._credentials = credentials
        logger.info("Initialized Vertex AI client for project %s in %s", project, self.location)
        return genai.Client(vertexai=True, project=project, location=self.location, credentials=credentials)


def _first_inline_image(response: Any) -> Optional[bytes]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    content = getattr(candidates[0], "content", None)
    for part in getattr(content, "parts", None) or []:
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            return inline.data
    return None
