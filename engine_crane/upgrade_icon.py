"""
The ``ui/upgrade.png`` badge AC shows over a car's preview when it's an
upgraded spec of another car.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, ImageDraw, ImageFont

logger = logging.getLogger(__name__)

UPGRADE_ICON_RELATIVE_PATH = Path('ui') / 'upgrade.png'
ICON_SIZE = (64, 64)


def _load_font(size: int) -> ImageFont.ImageFont:
    try:
        return ImageFont.truetype("arial.ttf", size)
    except OSError:
        return ImageFont.load_default()


def render_upgrade_icon(label: str = 'ENG', size: Tuple[int, int] = ICON_SIZE) -> bytes:
    """A white rounded badge with the label centred, on a transparent background."""
    img = Image.new("RGBA", size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    inset = max(1, size[0] // 16)
    draw.rounded_rectangle((inset, inset, size[0] - inset - 1, size[1] - inset - 1),
                           radius=size[0] // 6, outline=(255, 255, 255, 255), width=max(1, size[0] // 16))
    font = _load_font(size[1] // 3)
    left, top, right, bottom = draw.textbbox((0, 0), label, font=font)
    x = (size[0] - (right - left)) // 2 - left
    y = (size[1] - (bottom - top)) // 2 - top
    draw.text((x, y), label, fill=(255, 255, 255, 255), font=font)
    out = io.BytesIO()
    img.save(out, format='PNG', optimize=True)
    return out.getvalue()


class CarUpgradeIcon:
    def __init__(self, car_path: Path) -> None:
        self.path = Path(car_path) / UPGRADE_ICON_RELATIVE_PATH

    def is_present(self) -> bool:
        return self.path.is_file()

    def size(self) -> Optional[Tuple[int, int]]:
        if not self.is_present():
            return None
        with Image.open(self.path) as img:
            return img.size

    def update(self, image_bytes: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Writing %s", self.path)
        self.path.write_bytes(image_bytes)
