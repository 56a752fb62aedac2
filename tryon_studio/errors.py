"""Exception types raised by the try-on pipeline."""

from typing import Any, List, Optional

RATE_LIMIT_MESSAGE = (
    "429: Quota exhausted. Please wait a moment and retry, or switch to a different API key."
)
GENERIC_FAILURE_MESSAGE = "Something went wrong while generating. Please try again later."


class TryOnStudioError(Exception):
    """Base class for errors surfaced at the HTTP boundary."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "status": self.status_code}


class ImageNormalizationError(TryOnStudioError):
    """An input image could not be brought into canonical JPEG form."""

    status_code = 400

    def __init__(self, message: str, mime: Optional[str] = None):
        super().__init__(message)
        self.mime = mime


class UnsupportedFormat(ImageNormalizationError):
    """The image mime type is outside the supported set."""


class ConversionFailed(ImageNormalizationError):
    """Decoding or re-encoding an image failed."""


class CropFailed(TryOnStudioError):
    """A single patch extraction failed."""


class AnalysisFailed(TryOnStudioError):
    """Vision enrichment failed or returned unparseable content."""


class InvalidReferenceImage(TryOnStudioError):
    """A reference image in the final set is malformed."""

    status_code = 400

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class ConfigurationError(TryOnStudioError):
    """Required service credentials or endpoints are missing."""

    status_code = 500

    def __init__(self, missing: List[str]):
        super().__init__(
            f"Server configuration error: Missing {', '.join(missing)}. Please check your .env file."
        )
        self.missing = list(missing)


class UpstreamError(TryOnStudioError):
    """The upstream generation/chat service returned a non-success response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        raw: Any = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.raw = raw
        self.hint = hint

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429

    def to_dict(self) -> dict:
        payload = {
            "error": RATE_LIMIT_MESSAGE if self.rate_limited else self.message,
            "status": self.status_code,
        }
        if self.hint:
            payload["hint"] = self.hint
        if self.raw is not None:
            payload["raw"] = self.raw
        return payload
