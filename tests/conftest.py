"""
Pytest configuration and fixtures for image batch resizer tests
"""

import io
import threading

import pytest
from PIL import Image

from image_batch_resizer.image_io import BytesSource, SourceFile
from image_batch_resizer.models import Dimensions, ResizePolicy
from image_batch_resizer.processor import BatchProcessor
from image_batch_resizer.registry import ItemRegistry
from image_batch_resizer.session import ResizeSession


class FakeCodec:
    """Codec stand-in: echoes its inputs, fails for sources listed in ``fail_on``."""

    def __init__(self, fail_on=(), on_render=None):
        self.fail_on = set(fail_on)
        self.on_render = on_render
        self.calls = []
        self._lock = threading.Lock()

    def render(self, source, target, rotation, output_format, quality):
        name = source.decode()
        with self._lock:
            self.calls.append((name, target, rotation, output_format, quality))
        if self.on_render is not None:
            self.on_render(name)
        if name in self.fail_on:
            raise ValueError(f"cannot decode {name}")
        return f"{name}:{target}:{int(rotation)}:{output_format.value}".encode()


def fake_source(name: str, width: int = 1600, height: int = 1200) -> SourceFile:
    """A source whose bytes are just its name, for use with FakeCodec."""
    return SourceFile(name, BytesSource(name, name.encode()), Dimensions(width, height))


def image_bytes(width: int, height: int, fmt: str = "PNG", mode: str = "RGB", color=(200, 30, 30)) -> bytes:
    """Encode a solid test image in memory."""
    if mode == "RGBA" and len(color) == 3:
        color = (*color, 128)
    img = Image.new(mode, (width, height), color)
    buffer = io.BytesIO()
    img.save(buffer, fmt)
    return buffer.getvalue()


@pytest.fixture
def policy():
    """Default policy: 1080 wide, aspect ratio kept, JPEG"""
    return ResizePolicy()


@pytest.fixture
def registry(policy):
    return ItemRegistry(policy)


@pytest.fixture
def codec():
    return FakeCodec()


@pytest.fixture
def processor(codec):
    return BatchProcessor(codec=codec)


@pytest.fixture
def session(codec):
    """Session wired to the fake codec"""
    return ResizeSession(processor=BatchProcessor(codec=codec))


@pytest.fixture
def config_home(tmp_path, monkeypatch):
    """Redirect the config directory into a temporary folder."""
    monkeypatch.setattr("sys.platform", "linux")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    return tmp_path / "config" / "image-batch-resizer"


@pytest.fixture
def image_folder(tmp_path):
    """Folder with three real images and one non-image file"""
    folder = tmp_path / "photos"
    folder.mkdir()
    (folder / "landscape.png").write_bytes(image_bytes(1600, 1200))
    (folder / "portrait.jpg").write_bytes(image_bytes(600, 900, fmt="JPEG"))
    (folder / "alpha.png").write_bytes(image_bytes(400, 400, mode="RGBA"))
    (folder / "notes.txt").write_text("not an image")
    return folder
