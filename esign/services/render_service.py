"""
Signed-document rendering.

The HTTP adapter posts the original file and the filled field values to an
external render service and stores the PDF it returns.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from esign.core.config import settings
from esign.services.esign_exceptions import RenderFailure
from esign.services.file_storage_service import BlobStorageInterface

logger = logging.getLogger(__name__)


class RendererInterface(ABC):
    """Signed-PDF renderer collaborator."""

    @abstractmethod
    def render(self, document_url: str, fields: List[Dict[str, Any]]) -> str:
        """
        Produce the signed rendition of a document.

        Args:
            document_url: Storage URL of the original file
            fields: Filled field placements (type, page, geometry, value)

        Returns:
            Storage URL of the signed file

        Raises:
            RenderFailure: If the rendition could not be produced
        """
        pass


class UnconfiguredRenderer(RendererInterface):
    """Renderer used when ESIGN_RENDER_URL is not set; always fails."""

    def render(self, document_url: str, fields: List[Dict[str, Any]]) -> str:
        logger.warning("Signed-document renderer not configured (ESIGN_RENDER_URL is empty)")
        raise RenderFailure("No render service configured")


class HttpRenderService(RendererInterface):
    """Renderer backed by an HTTP render service."""

    def __init__(
        self,
        storage: BlobStorageInterface,
        render_url: str,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        """
        Initialize the HTTP renderer.

        Args:
            storage: Blob storage holding originals and receiving renditions
            render_url: Endpoint accepting multipart original + fields JSON
            api_key: Optional API key sent as X-API-Key
            timeout: Request timeout in seconds (uses ESIGN_RENDER_TIMEOUT if None)
        """
        self.storage = storage
        self.render_url = render_url
        self.api_key = api_key
        self.timeout = timeout or settings.ESIGN_RENDER_TIMEOUT

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/pdf"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    def _handle_api_error(self, response: requests.Response) -> None:
        """Handle API error responses."""
        if not response.ok:
            try:
                error_msg = response.json().get("error", f"API error: {response.status_code}")
            except ValueError:
                error_msg = f"{response.status_code} - {response.text[:500]}"
            logger.error(f"Render service error: {error_msg}")
            raise RenderFailure(f"Render service error: {error_msg}")

    def render(self, document_url: str, fields: List[Dict[str, Any]]) -> str:
        try:
            original = self.storage.read(document_url)
        except (OSError, ValueError) as e:
            raise RenderFailure(f"Could not read original document {document_url}: {e}") from e

        filename = Path(document_url).name
        try:
            response = requests.post(
                self.render_url,
                headers=self._get_headers(),
                files={"file": (filename, original, "application/octet-stream")},
                data={"fields": json.dumps(fields, default=str)},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Render service unreachable: {e}")
            raise RenderFailure(f"Render service unreachable: {e}") from e

        self._handle_api_error(response)
        if not response.content:
            raise RenderFailure("Render service returned an empty document")

        signed_name = f"signed_{Path(filename).stem}.pdf"
        try:
            signed_url = self.storage.upload(response.content, "application/pdf", signed_name)
        except OSError as e:
            raise RenderFailure(f"Could not store signed document: {e}") from e
        logger.info(f"Rendered signed document for {document_url} -> {signed_url}")
        return signed_url


def create_renderer(storage: BlobStorageInterface) -> RendererInterface:
    """Create the renderer configured in settings."""
    if not settings.ESIGN_RENDER_URL:
        logger.warning("ESIGN_RENDER_URL not set; completed documents will wait for a configured renderer")
        return UnconfiguredRenderer()
    return HttpRenderService(
        storage,
        settings.ESIGN_RENDER_URL,
        api_key=settings.get_secret_value("ESIGN_RENDER_API_KEY"),
        timeout=settings.ESIGN_RENDER_TIMEOUT,
    )
