import pytest

from accessibility import AccessibilityService
from storage import DocumentStorage, DocumentStore
from vision import VisionService

import pdf_samples


class FakeVision(VisionService):
    """Vision backend that answers from a list, raising for Exceptions."""

    name = "fake"

    def __init__(self, answers=None):
        super().__init__(timeout=1, max_retries=1, backoff_seconds=0, sleep=lambda s: None)
        self.answers = list(answers or [])
        self.calls = []

    def check_connection(self) -> bool:
        return True

    def is_model_available(self) -> bool:
        return True

    def _describe(self, image_base64, prompt, mime_type):
        self.calls.append((image_base64, mime_type))
        answer = self.answers.pop(0) if self.answers else "a red square"
        if isinstance(answer, Exception):
            raise answer
        return answer


@pytest.fixture
def storage(tmp_path):
    return DocumentStorage(tmp_path / "uploads", tmp_path / "output")


@pytest.fixture
def store():
    return DocumentStore()


@pytest.fixture
def fake_vision():
    return FakeVision()


@pytest.fixture
def service(storage, store, fake_vision):
    return AccessibilityService(storage, store, vision=fake_vision, lock_timeout=5)


@pytest.fixture
def three_page_pdf():
    """Three pages, five images: 2 + 1 + 2."""
    return pdf_samples.build_pdf([
        [pdf_samples.jpeg_image(8, 6), pdf_samples.flate_rgb_image(4, 3)],
        [pdf_samples.gray_image(5, 2)],
        [pdf_samples.jpeg_image(3, 3), pdf_samples.jpeg_image(7, 2)],
    ])
