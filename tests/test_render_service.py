"""
Unit tests for the signed-document renderer with a mocked render API.
"""

import json
from unittest.mock import Mock, patch

import pytest
import requests

from esign.services.esign_exceptions import RenderFailure
from esign.services.render_service import HttpRenderService, UnconfiguredRenderer, create_renderer

from conftest import FakeStorage

FIELDS = [{"id": 1, "field_type": "signature", "page": 1, "x": 72.0, "y": 640.0, "value": "data:image/png;base64,AA"}]


@pytest.fixture
def storage():
    storage = FakeStorage()
    storage.upload(b"%PDF-1.4 original", "application/pdf", "purchase.pdf")
    return storage


@pytest.fixture
def renderer(storage):
    return HttpRenderService(storage, "http://renderer:8080/render", api_key="render-key", timeout=5)


def _response(status_code=200, content=b"%PDF-1.4 signed", json_body=None):
    response = Mock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.content = content
    response.text = content.decode(errors="replace")
    if json_body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = json_body
    return response


def test_render_posts_original_and_fields(renderer, storage):
    with patch("esign.services.render_service.requests.post", return_value=_response()) as mock_post:
        signed_url = renderer.render("memory://1/purchase.pdf", FIELDS)

    assert storage.read(signed_url) == b"%PDF-1.4 signed"
    assert signed_url.endswith("signed_purchase.pdf")

    kwargs = mock_post.call_args.kwargs
    assert mock_post.call_args.args[0] == "http://renderer:8080/render"
    assert kwargs["headers"]["X-API-Key"] == "render-key"
    assert kwargs["files"]["file"][0] == "purchase.pdf"
    assert kwargs["files"]["file"][1] == b"%PDF-1.4 original"
    assert json.loads(kwargs["data"]["fields"]) == FIELDS
    assert kwargs["timeout"] == 5


def test_api_error_becomes_render_failure(renderer):
    response = _response(status_code=500, json_body={"error": "font missing"})
    with patch("esign.services.render_service.requests.post", return_value=response):
        with pytest.raises(RenderFailure, match="font missing"):
            renderer.render("memory://1/purchase.pdf", FIELDS)


def test_non_json_error_body(renderer):
    with patch("esign.services.render_service.requests.post", return_value=_response(502, b"Bad Gateway")):
        with pytest.raises(RenderFailure, match="502"):
            renderer.render("memory://1/purchase.pdf", FIELDS)


def test_unreachable_service(renderer):
    with patch(
        "esign.services.render_service.requests.post",
        side_effect=requests.ConnectionError("connection refused"),
    ):
        with pytest.raises(RenderFailure, match="unreachable"):
            renderer.render("memory://1/purchase.pdf", FIELDS)


def test_empty_rendition(renderer):
    with patch("esign.services.render_service.requests.post", return_value=_response(content=b"")):
        with pytest.raises(RenderFailure, match="empty"):
            renderer.render("memory://1/purchase.pdf", FIELDS)


def test_missing_original(renderer):
    with pytest.raises(RenderFailure):
        HttpRenderService(Mock(read=Mock(side_effect=FileNotFoundError("gone"))), "http://renderer").render(
            "file:///tmp/gone.pdf", FIELDS
        )


def test_unconfigured_renderer_always_fails():
    with pytest.raises(RenderFailure):
        UnconfiguredRenderer().render("memory://1/purchase.pdf", FIELDS)


def test_create_renderer_without_url(storage):
    # The test environment leaves ESIGN_RENDER_URL empty
    assert isinstance(create_renderer(storage), UnconfiguredRenderer)


def test_create_renderer_with_url(storage):
    with patch("esign.services.render_service.settings") as mock_settings:
        mock_settings.ESIGN_RENDER_URL = "http://renderer:8080/render"
        mock_settings.ESIGN_RENDER_TIMEOUT = 30
        mock_settings.get_secret_value.return_value = None
        renderer = create_renderer(storage)

    assert isinstance(renderer, HttpRenderService)
    assert renderer.render_url == "http://renderer:8080/render"
    assert renderer.timeout == 30
