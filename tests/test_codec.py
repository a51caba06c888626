"""
Tests for the Pillow codec
"""

import io

import pytest
from PIL import Image

from conftest import image_bytes
from image_batch_resizer.codec import CodecError, PillowCodec, quality_to_pil
from image_batch_resizer.models import Dimensions, OutputFormat, RotationAngle


def decode(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


class TestPillowCodec:
    """Test decode, resize, rotate and encode"""

    @pytest.fixture
    def codec(self):
        return PillowCodec()

    @pytest.fixture
    def source(self):
        return image_bytes(1600, 1200)

    @pytest.mark.parametrize("output_format, pil_format", [
        (OutputFormat.JPEG, "JPEG"), (OutputFormat.PNG, "PNG"), (OutputFormat.WEBP, "WEBP"),
    ])
    def test_resizes_to_target(self, codec, source, output_format, pil_format):
        data = codec.render(source, Dimensions(800, 600), RotationAngle.DEG_0, output_format, 0.85)
        img = decode(data)
        assert img.format == pil_format
        assert img.size == (800, 600)

    def test_quarter_turn_swaps_canvas(self, codec, source):
        data = codec.render(source, Dimensions(800, 600), RotationAngle.DEG_90, OutputFormat.PNG, 1.0)
        assert decode(data).size == (600, 800)

    def test_half_turn_keeps_canvas(self, codec, source):
        data = codec.render(source, Dimensions(800, 600), RotationAngle.DEG_180, OutputFormat.PNG, 1.0)
        assert decode(data).size == (800, 600)

    def test_rotation_is_clockwise(self, codec):
        # left half red, right half blue; after a clockwise turn red is on top
        img = Image.new("RGB", (40, 20), (0, 0, 255))
        img.paste((255, 0, 0), (0, 0, 20, 20))
        buffer = io.BytesIO()
        img.save(buffer, "PNG")
        data = codec.render(buffer.getvalue(), Dimensions(40, 20), RotationAngle.DEG_90, OutputFormat.PNG, 1.0)
        out = decode(data).convert("RGB")
        assert out.size == (20, 40)
        assert out.getpixel((10, 5)) == (255, 0, 0)
        assert out.getpixel((10, 35)) == (0, 0, 255)

    def test_deterministic(self, codec, source):
        first = codec.render(source, Dimensions(300, 200), RotationAngle.DEG_270, OutputFormat.JPEG, 0.6)
        second = codec.render(source, Dimensions(300, 200), RotationAngle.DEG_270, OutputFormat.JPEG, 0.6)
        assert first == second

    def test_alpha_kept_for_png_and_flattened_for_jpeg(self, codec):
        source = image_bytes(100, 100, mode="RGBA")
        png = decode(codec.render(source, Dimensions(50, 50), RotationAngle.DEG_0, OutputFormat.PNG, 1.0))
        jpeg = decode(codec.render(source, Dimensions(50, 50), RotationAngle.DEG_0, OutputFormat.JPEG, 1.0))
        assert png.mode == "RGBA"
        assert jpeg.mode == "RGB"

    def test_lower_quality_is_smaller(self, codec):
        noisy = Image.effect_noise((400, 300), 64).convert("RGB")
        buffer = io.BytesIO()
        noisy.save(buffer, "PNG")
        high = codec.render(buffer.getvalue(), Dimensions(400, 300), RotationAngle.DEG_0, OutputFormat.JPEG, 0.95)
        low = codec.render(buffer.getvalue(), Dimensions(400, 300), RotationAngle.DEG_0, OutputFormat.JPEG, 0.2)
        assert len(low) < len(high)

    def test_garbage_source_raises_codec_error(self, codec):
        with pytest.raises(CodecError):
            codec.render(b"not an image", Dimensions(10, 10), RotationAngle.DEG_0, OutputFormat.PNG, 1.0)

    def test_quality_mapping(self):
        assert quality_to_pil(0.85) == 85
        assert quality_to_pil(0.0) == 1
        assert quality_to_pil(1.0) == 100
        assert quality_to_pil(0.005) == 1
