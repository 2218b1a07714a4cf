"""
Steps for optimizing raster images.
"""
from __future__ import annotations

import io

from .core import Asset, Step
from .dependencies import PipDependency


class ImageOptimizeStep(Step):
    """
    A lossless-by-default Pillow Step re-encoding PNG and JPEG images with
    their encoders' optimization passes. @jpeg_quality of None keeps the
    source's quantization tables. Results that are not smaller than the
    original are discarded in favour of the original bytes.
    """
    kind = 'image-optimize'
    accepts = ('image/png', 'image/jpeg')

    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('Pillow', check_name='PIL'),
        }

    def __init__(self, png_compress_level: int = 9, jpeg_quality: int | None = None):
        self.png_compress_level = png_compress_level
        self.jpeg_quality = jpeg_quality

    def __repr__(self):
        return f'ImageOptimizeStep(png_compress_level={self.png_compress_level})'

    def save_options(self, image_format: str):
        if image_format == 'PNG':
            return {'optimize': True, 'compress_level': self.png_compress_level}
        if image_format == 'JPEG':
            return {
                'optimize': True,
                'progressive': True,
                'quality': 'keep' if self.jpeg_quality is None else self.jpeg_quality,
            }
        raise ValueError(f'Unsupported image format {image_format}')

    def __call__(self, asset: Asset):
        from PIL import Image

        with Image.open(io.BytesIO(asset.data)) as img:
            image_format = img.format or ''
            options = self.save_options(image_format)
            buffer = io.BytesIO()
            img.save(buffer, format=image_format, **options)

        optimized = buffer.getvalue()
        if len(optimized) >= len(asset.data):
            return self.emit(asset, asset.data)
        return self.emit(asset, optimized)
