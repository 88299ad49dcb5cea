"""Wallpaper images and framebuffer descriptions."""

from __future__ import annotations

import enum
import io
import os
import struct
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import BinaryIO

from PIL import Image as _PILImage

_FIXED_SHIFT = 6


class ImageLayout(enum.Enum):
    """How an image covers the screen."""

    TILED = 0
    CENTERED = 1
    STRETCHED = 2


@dataclass
class Image:
    """A decoded image held as 0x00RRGGBB pixels, row by row."""

    img_width: int
    img_height: int
    pixels: list[int]
    x_size: int = 0
    y_size: int = 0
    layout: ImageLayout = ImageLayout.TILED
    bpp: int = 32
    x_displacement: int = 0
    y_displacement: int = 0
    back_colour: int = 0

    def __post_init__(self) -> None:
        if self.img_width <= 0 or self.img_height <= 0:
            raise ValueError("image dimensions must be positive")
        if len(self.pixels) != self.img_width * self.img_height:
            raise ValueError("pixel count does not match the dimensions")
        if not self.x_size:
            self.x_size = self.img_width
        if not self.y_size:
            self.y_size = self.img_height

    @property
    def pitch(self) -> int:
        """Bytes per row of the bitmap."""
        return self.img_width * 4

    @classmethod
    def open(cls, file: str | os.PathLike[str] | bytes | BinaryIO) -> Image:
        """Decode an image file into a tiled image of XRGB pixels."""
        source = io.BytesIO(file) if isinstance(file, (bytes, bytearray)) else file
        try:
            with _PILImage.open(source) as decoded:
                rgba = decoded.convert("RGBA")
                width, height = rgba.size
                raw = rgba.tobytes()
        except OSError as exc:
            raise ValueError(f"cannot decode image: {exc}") from exc
        pixels = [(r << 16) | (g << 8) | b for r, g, b, _ in struct.iter_unpack("4B", raw)]
        return cls(width, height, pixels)

    @classmethod
    def from_pixels(cls, width: int, height: int, pixels: Sequence[int]) -> Image:
        """Build a tiled image from 0x00RRGGBB pixels listed row by row."""
        return cls(width, height, [p & 0xFFFFFF for p in pixels])

    def make_centered(self, frame_width: int, frame_height: int, back_colour: int) -> None:
        """Centre the image in a frame, filling the rest with *back_colour*."""
        self.layout = ImageLayout.CENTERED
        self.x_displacement = frame_width // 2 - self.x_size // 2
        self.y_displacement = frame_height // 2 - self.y_size // 2
        self.back_colour = back_colour

    def make_stretched(self, new_width: int, new_height: int) -> None:
        """Stretch the image to cover *new_width* by *new_height*."""
        self.layout = ImageLayout.STRETCHED
        self.x_size = new_width
        self.y_size = new_height

    def _bitmap(self, x: int, y: int) -> int:
        return self.pixels[y * self.img_width + x]

    def pixel(self, x: int, y: int) -> int:
        """Return the colour shown at screen position (*x*, *y*)."""
        if self.layout is ImageLayout.TILED:
            return self._bitmap(x % self.img_width, y % self.img_height)
        if self.layout is ImageLayout.CENTERED:
            image_x = x - self.x_displacement
            image_y = y - self.y_displacement
            if not (0 <= image_x < self.x_size and 0 <= image_y < self.y_size):
                return self.back_colour
            return self._bitmap(image_x, image_y)
        image_y = (y * self.img_height) // self.y_size
        ratio = (self.img_width << _FIXED_SHIFT) // self.x_size
        image_x = (ratio * x) >> _FIXED_SHIFT
        return self._bitmap(image_x, image_y)


@dataclass
class Framebuffer:
    """A linear framebuffer and its pixel format."""

    width: int
    height: int
    pitch: int
    bpp: int = 32
    memory_model: int = 6
    red_mask_size: int = 8
    red_mask_shift: int = 16
    green_mask_size: int = 8
    green_mask_shift: int = 8
    blue_mask_size: int = 8
    blue_mask_shift: int = 0
    memory: bytearray = field(default_factory=bytearray)
    modes: list[Framebuffer] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.memory:
            self.memory = bytearray(self.pitch * self.height)

    @property
    def is_xrgb8888(self) -> bool:
        """True if the pixel format is 32-bit xRGB with 8 bits per channel."""
        return (
            self.red_mask_size,
            self.red_mask_shift,
            self.green_mask_size,
            self.green_mask_shift,
            self.blue_mask_size,
            self.blue_mask_shift,
        ) == (8, 16, 8, 8, 8, 0)

    def clear(self) -> None:
        """Zero the visible part of every row."""
        if self.bpp == 32:
            row_bytes = self.width * 4
        elif self.bpp == 16:
            row_bytes = self.width * 2
        else:
            row_bytes = self.width * self.bpp
        for y in range(self.height):
            start = y * self.pitch
            end = min(start + row_bytes, len(self.memory))
            if start >= end:
                break
            self.memory[start:end] = bytes(end - start)