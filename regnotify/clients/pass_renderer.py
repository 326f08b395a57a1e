from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import logging
from pathlib import Path

from barcode import Code128
from barcode.errors import BarcodeError
from barcode.writer import ImageWriter
from PIL import Image, ImageDraw, ImageFont

from regnotify.domain.errors import RenderError

logger = logging.getLogger("notifier")

FALLBACK_CARD_SIZE = (2700, 1479)
CARD_TITLE = "Housing Pass"


@dataclass(frozen=True)
class BarcodeArea:
    left: int = 157
    top: int = 1064
    width: int = 1308
    height: int = 275


@dataclass(frozen=True)
class BarcodePassRenderer:
    """Composites a Code128 barcode of the registration number onto a pass card.

    The card is the configured template image; when none is readable a blank
    white card with a title line is drawn instead, so a pass is always produced.
    """

    default_template_path: str | None = None
    area: BarcodeArea = BarcodeArea()
    padding: int = 20
    corner_radius: int = 20
    caption_font_size: int = 40

    def render(self, *, registration_no: str, template_path: str | None = None) -> bytes:
        value = registration_no.strip()
        if not value:
            raise RenderError("registration number is required for a pass")

        card = self._load_card(template_path or self.default_template_path, registration_no=value)
        block = self._barcode_block(value)
        card.paste(block, (self.area.left, self.area.top), block)

        buffer = BytesIO()
        card.save(buffer, format="PNG")
        return buffer.getvalue()

    def _load_card(self, template_path: str | None, *, registration_no: str) -> Image.Image:
        if template_path and Path(template_path).is_file():
            with Image.open(template_path) as template:
                return template.convert("RGB")

        if template_path:
            logger.warning("pass template not found, drawing blank card", extra={"path": template_path})
        card = Image.new("RGB", FALLBACK_CARD_SIZE, "white")
        draw = ImageDraw.Draw(card)
        center_x = FALLBACK_CARD_SIZE[0] // 2
        draw.text((center_x, 100), CARD_TITLE, fill="black", font=_font(60), anchor="mm")
        draw.text(
            (center_x, 180),
            f"Registration No: {registration_no}",
            fill="black",
            font=_font(45),
            anchor="mm",
        )
        return card

    def _barcode_block(self, value: str) -> Image.Image:
        caption_height = self.caption_font_size + 12
        max_width = self.area.width - 4 * self.padding
        max_height = self.area.height - 2 * self.padding - caption_height
        bars = _barcode_image(value)
        bars.thumbnail((max_width, max_height))

        block = Image.new("RGBA", (self.area.width, self.area.height), (0, 0, 0, 0))
        draw = ImageDraw.Draw(block)
        background_width = bars.width + 2 * self.padding
        background_left = (self.area.width - background_width) // 2
        draw.rounded_rectangle(
            (background_left, 0, background_left + background_width, self.area.height - 1),
            radius=self.corner_radius,
            fill="white",
        )
        bars_top = self.padding
        block.paste(bars, ((self.area.width - bars.width) // 2, bars_top))
        draw.text(
            (self.area.width // 2, bars_top + bars.height + caption_height // 2),
            value,
            fill="black",
            font=_font(self.caption_font_size),
            anchor="mm",
        )
        return block


def _barcode_image(value: str) -> Image.Image:
    try:
        code = Code128(value, writer=ImageWriter())
        image = code.render(
            writer_options={
                "write_text": False,
                "module_width": 0.8,
                "module_height": 20.0,
                "quiet_zone": 1.0,
                "dpi": 300,
            }
        )
    except (BarcodeError, KeyError, ValueError) as exc:
        raise RenderError(f"cannot encode {value!r} as Code128: {exc}") from exc
    return image.convert("RGB")


def _font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    return ImageFont.load_default(size=size)
