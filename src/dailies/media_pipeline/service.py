from __future__ import annotations

import abc
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence


class ReferenceType(str, Enum):
    ASSET = "asset"
    STYLE = "style"


@dataclass(frozen=True)
class MediaPart:
    """Inline media passed to the model alongside a prompt."""

    data: bytes = field(repr=False)
    mime_type: str


@dataclass(frozen=True)
class ReferenceImage:
    data: bytes = field(repr=False)
    mime_type: str = "image/png"
    reference_type: ReferenceType = ReferenceType.ASSET


@dataclass(frozen=True)
class VideoRequestConfig:
    model: str
    aspect_ratio: str = "16:9"
    resolution: str = "720p"
    duration_seconds: Optional[int] = None
    number_of_videos: int = 1


@dataclass
class GenerationHandle:
    """Opaque reference to a long-running generation job."""

    name: str
    raw: Any = None


@dataclass(frozen=True)
class PollResult:
    done: bool
    media: Optional[bytes] = field(default=None, repr=False)
    uri: Optional[str] = None
    error: Optional[str] = None


class GenerativeService(abc.ABC):
    """Narrow surface of the remote generative model provider.

    Every call may be slow, throttled, or complete with no media. Adapters
    raise ``TransientProviderError`` for failures worth retrying.
    """

    @abc.abstractmethod
    async def generate_text(
        self,
        prompt: str,
        schema: Dict[str, Any] | None = None,
        attachments: Sequence[MediaPart] = (),
    ) -> Dict[str, Any]:
        raise NotImplementedError

    @abc.abstractmethod
    async def generate_image(self, prompt: str, reference_images: Sequence[MediaPart] = ()) -> bytes:
        raise NotImplementedError

    @abc.abstractmethod
    async def generate_video(
        self,
        prompt: str,
        reference_images: Sequence[ReferenceImage],
        config: VideoRequestConfig,
    ) -> GenerationHandle:
        raise NotImplementedError

    @abc.abstractmethod
    async def poll_operation(self, handle: GenerationHandle) -> PollResult:
        raise NotImplementedError
