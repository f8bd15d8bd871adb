"""
Screenshot storage: upload image bytes and get back a URL reference.

Screenshots never travel through events or transcripts as binary data; the session
engine uploads them here and passes the returned URL along instead.
"""

from __future__ import annotations

import re
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Protocol

import aiohttp

from .exceptions import ImageUploadError

SCREENSHOT_LABEL_PATTERN = re.compile(r"^\s*screenshot\s*url\s*:\s*", re.IGNORECASE)


class WebPilotLogger(Protocol):
    """Protocol for optional logger interface."""

    def info(self, message: str) -> None:
        """Log info message."""
        ...

    def warning(self, message: str) -> None:
        """Log warning message."""
        ...

    def error(self, message: str) -> None:
        """Log error message."""
        ...


def strip_screenshot_label(reference: str) -> str:
    """
    Remove a leading label such as "Screenshot URL: " or "screenshotUrl: ".

    Args:
        reference: Screenshot reference as emitted in events or LLM output

    Returns:
        The bare URL
    """
    return SCREENSHOT_LABEL_PATTERN.sub("", reference).strip()


class ImageStore(ABC):
    """
    Abstract interface for the remote image store.

    Implementations take encoded image bytes and return a dereferenceable URL.
    """

    @abstractmethod
    async def upload(
        self, data: bytes, filename: str | None = None, content_type: str = "image/jpeg"
    ) -> str:
        """
        Upload an image.

        Args:
            data: Encoded image bytes
            filename: Optional file name hint
            content_type: MIME type of the image

        Returns:
            URL of the stored image
        """
        pass


def _default_filename(content_type: str) -> str:
    extension = "png" if content_type == "image/png" else "jpg"
    return f"screenshot_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}.{extension}"


class HttpImageStore(ImageStore):
    """
    Uploads screenshots with a multipart POST to an image hosting endpoint.

    The endpoint must answer with JSON containing "secure_url" or "url" (Cloudinary's
    unsigned upload API and most S3-style upload proxies do).

    Example:
        >>> store = HttpImageStore(
        ...     "https://api.cloudinary.com/v1_1/demo/image/upload",
        ...     upload_preset="screenshots",
        ... )
        >>> url = await store.upload(jpeg_bytes)
    """

    def __init__(
        self,
        upload_url: str,
        upload_preset: str | None = None,
        api_key: str | None = None,
        timeout_s: float = 30.0,
        logger: WebPilotLogger | None = None,
    ):
        """
        Initialize HTTP image store.

        Args:
            upload_url: Endpoint accepting multipart uploads
            upload_preset: Optional preset name sent as the "upload_preset" form field
            api_key: Optional bearer token
            timeout_s: Total timeout for one upload
            logger: Optional logger instance for upload sizes and errors
        """
        self.upload_url = upload_url
        self.upload_preset = upload_preset
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.logger = logger

    async def upload(
        self, data: bytes, filename: str | None = None, content_type: str = "image/jpeg"
    ) -> str:
        filename = filename or _default_filename(content_type)

        form = aiohttp.FormData()
        form.add_field("file", data, filename=filename, content_type=content_type)
        if self.upload_preset:
            form.add_field("upload_preset", self.upload_preset)

        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        if self.logger:
            self.logger.info(f"Uploading screenshot {filename} ({len(data) / 1024:.1f} KB)")

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.upload_url,
                    data=form,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_s),
                ) as response:
                    if response.status >= 400:
                        body = await response.text()
                        raise ImageUploadError(
                            f"Image upload failed: HTTP {response.status}: {body[:200]}"
                        )
                    payload = await response.json()
        except ImageUploadError:
            raise
        except Exception as e:
            if self.logger:
                self.logger.error(f"Error uploading screenshot: {e}")
            raise ImageUploadError(f"Image upload failed: {e}") from e

        url = payload.get("secure_url") or payload.get("url")
        if not url:
            raise ImageUploadError("Image upload response missing url")
        return url


class LocalImageStore(ImageStore):
    """
    Writes screenshots to a local directory and returns file:// URLs.

    Used when no remote store is configured (offline mode, tests).
    """

    def __init__(self, directory: str | Path = "screenshots"):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    async def upload(
        self, data: bytes, filename: str | None = None, content_type: str = "image/jpeg"
    ) -> str:
        path = self.directory / (filename or _default_filename(content_type))
        path.write_bytes(data)
        return path.resolve().as_uri()


def create_image_store(
    upload_url: str | None = None,
    upload_preset: str | None = None,
    api_key: str | None = None,
    directory: str | Path = "screenshots",
    timeout_s: float = 30.0,
) -> ImageStore:
    """
    Create an image store, preferring the remote store when configured.

    Args:
        upload_url: Remote upload endpoint. If None, screenshots are stored locally.
        upload_preset: Optional preset for the remote endpoint
        api_key: Optional bearer token for the remote endpoint
        directory: Local fallback directory
        timeout_s: Upload timeout for the remote store

    Returns:
        ImageStore
    """
    if upload_url:
        print(f"☁️  [WebPilot] Screenshots upload to {upload_url}")
        return HttpImageStore(
            upload_url, upload_preset=upload_preset, api_key=api_key, timeout_s=timeout_s
        )

    print(f"💾 [WebPilot] Local screenshots: {directory}")
    return LocalImageStore(directory)
