"""Certificate PDF rendering with PyMuPDF.

Two strategies behind one protocol:

  TemplateStrategy  - stamps the recipient name onto a fixed-layout
                      template (PDF, or a JPEG/PNG page image).
  FallbackStrategy  - draws the whole certificate from scratch on a
                      landscape letter page.

CertificateRenderer looks for the template and uses it when present;
any RenderFailure from the template path drops to the fallback, so
render() always returns a complete document.
"""

from __future__ import annotations

import datetime
import functools
import io
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

import fitz
import qrcode

from cert_service.core.metrics import RENDER_DURATION, RENDERS
from cert_service.services.errors import RenderFailure

logger = logging.getLogger(__name__)

DECORATIVE_FONT_FILE = "Lora-BoldItalic.ttf"

# Noto Sans from pymupdf-fonts covers Latin, Greek and Cyrillic; PyMuPDF's
# own "cjk" font picks up what Noto lacks.
REGULAR_FONTS = ("notos", "cjk")
BOLD_FONTS = ("notosbo", "cjk")

NAME_FONT_SIZE = 36
MIN_NAME_FONT_SIZE = 14
NAME_OFFSET_RATIO = 0.47  # baseline, as a fraction of page height from the top
NAME_MAX_WIDTH_RATIO = 0.85

LETTER_LANDSCAPE = (792, 612)

STAMP_SIZE = 96
STAMP_MARGIN = 36
STAMP_GAP = 8
STAMP_FONT_SIZE = 9

_INK = (0.1, 0.1, 0.1)
_BODY = (0.2, 0.2, 0.2)
_MUTED = (0.4, 0.4, 0.4)
_FAINT = (0.6, 0.6, 0.6)
_BORDER = (0.8, 0.8, 0.8)
_BORDER_INNER = (0.88, 0.88, 0.88)


class RenderStrategyKind(str, Enum):
    TEMPLATE = "template"
    FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class CertificateFields:
    certificate_number: str
    recipient_name: str
    course_name: str
    issue_date: datetime.date
    issuer_name: str
    description: str = ""
    expiration_date: datetime.date | None = None
    signer_name: str | None = None
    include_stamp: bool = True


@dataclass(frozen=True, slots=True)
class RenderedDocument:
    content: bytes
    strategy: RenderStrategyKind


class RenderStrategy(Protocol):
    kind: RenderStrategyKind

    def render(self, fields: CertificateFields) -> bytes: ...


def format_certificate_date(value: datetime.date | None) -> str:
    if value is None:
        return ""
    return f"{value:%B} {value.day}, {value.year}"


def _qr_png(text: str) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=1,
    )
    qr.add_data(text)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@functools.lru_cache(maxsize=None)
def _builtin_font(name: str) -> fitz.Font:
    return fitz.Font(name)


def _covers(font: fitz.Font, text: str) -> bool:
    return all(font.has_glyph(ord(ch)) for ch in text if not ch.isspace())


def pick_font(text: str, names: tuple[str, ...], preferred: fitz.Font | None = None) -> fitz.Font:
    """First font that has a glyph for every character of text.

    preferred is tried before the built-in list. When nothing covers the
    text completely the last built-in font is used.
    """
    candidates = [preferred] if preferred is not None else []
    candidates.extend(_builtin_font(name) for name in names)
    for font in candidates:
        if _covers(font, text):
            return font
    return candidates[-1]


def _draw_stamp(page: fitz.Page, fields: CertificateFields, reason: str) -> None:
    """QR stamp in the bottom-right corner with the signer's name to its left,
    one word per line. A failure only costs the stamp."""
    if not fields.include_stamp:
        return
    try:
        signer = fields.signer_name or fields.issuer_name
        text = f"{signer} | {reason} | {fields.certificate_number}"
        width, height = page.rect.width, page.rect.height
        rect = fitz.Rect(
            width - STAMP_SIZE - STAMP_MARGIN,
            height - STAMP_SIZE - STAMP_MARGIN,
            width - STAMP_MARGIN,
            height - STAMP_MARGIN,
        )
        page.insert_image(rect, stream=_qr_png(text))

        words = signer.split()
        if not words:
            return
        line_height = STAMP_FONT_SIZE * 1.25
        y = rect.y0 + max(0.0, (STAMP_SIZE - line_height * len(words)) / 2) + STAMP_FONT_SIZE
        writer = fitz.TextWriter(page.rect)
        for word in words:
            font = pick_font(word, REGULAR_FONTS)
            word_width = font.text_length(word, fontsize=STAMP_FONT_SIZE)
            writer.append(
                (rect.x0 - STAMP_GAP - word_width, y), word, font=font, fontsize=STAMP_FONT_SIZE
            )
            y += line_height
        writer.write_text(page, color=_BODY)
    except Exception as e:
        logger.warning("Skipping verification stamp: %s", e)


class TemplateStrategy:
    kind = RenderStrategyKind.TEMPLATE

    def __init__(self, template_path: Path, fonts_dir: Path, stamp_reason: str) -> None:
        self._template_path = template_path
        self._font_path = fonts_dir / DECORATIVE_FONT_FILE
        self._stamp_reason = stamp_reason

    def is_available(self) -> bool:
        return self._template_path.is_file()

    def _load_decorative_font(self) -> fitz.Font | None:
        if not self._font_path.is_file():
            return None
        try:
            return fitz.Font(fontfile=str(self._font_path))
        except Exception as e:
            logger.warning("Could not load %s, using built-in font: %s", self._font_path.name, e)
            return None

    def _name_font(self, name: str) -> fitz.Font:
        # The decorative face is Latin only; other scripts fall through to Noto.
        return pick_font(name, BOLD_FONTS, preferred=self._load_decorative_font())

    def _open_template(self) -> fitz.Document:
        doc = fitz.open(str(self._template_path))
        if doc.is_pdf:
            return doc
        # Page image (JPEG/PNG): wrap it in a one-page PDF of the same size.
        pdf_bytes = doc.convert_to_pdf()
        doc.close()
        return fitz.open("pdf", pdf_bytes)

    def render(self, fields: CertificateFields) -> bytes:
        try:
            doc = self._open_template()
        except Exception as e:
            raise RenderFailure(f"cannot open template {self._template_path}: {e}") from e

        try:
            if doc.page_count == 0:
                raise RenderFailure("template has no pages")
            page = doc[0]
            width, height = page.rect.width, page.rect.height

            name = fields.recipient_name.strip().upper()
            font = self._name_font(name)
            size = NAME_FONT_SIZE
            text_width = font.text_length(name, fontsize=size)
            # Long names shrink until they fit inside the printable band.
            while text_width > width * NAME_MAX_WIDTH_RATIO and size > MIN_NAME_FONT_SIZE:
                size -= 1
                text_width = font.text_length(name, fontsize=size)

            writer = fitz.TextWriter(page.rect)
            writer.append(
                ((width - text_width) / 2, height * NAME_OFFSET_RATIO),
                name,
                font=font,
                fontsize=size,
            )
            writer.write_text(page, color=(0, 0, 0))

            _draw_stamp(page, fields, self._stamp_reason)
            return doc.tobytes(garbage=3, deflate=True)
        except RenderFailure:
            raise
        except Exception as e:
            raise RenderFailure(f"template rendering failed: {e}") from e
        finally:
            doc.close()


class FallbackStrategy:
    kind = RenderStrategyKind.FALLBACK

    def __init__(self, stamp_reason: str) -> None:
        self._stamp_reason = stamp_reason

    @staticmethod
    def _write(
        page: fitz.Page,
        x: float,
        y: float,
        text: str,
        *,
        size: float,
        bold: bool = False,
        color: tuple[float, float, float] = _BODY,
        centered: bool = False,
    ) -> None:
        font = pick_font(text, BOLD_FONTS if bold else REGULAR_FONTS)
        if centered:
            x = (page.rect.width - font.text_length(text, fontsize=size)) / 2
        writer = fitz.TextWriter(page.rect)
        writer.append((x, y), text, font=font, fontsize=size)
        writer.write_text(page, color=color)

    def _centered(self, page: fitz.Page, y: float, text: str, **kwargs) -> None:
        self._write(page, 0, y, text, centered=True, **kwargs)

    @staticmethod
    def _draw_border(page: fitz.Page) -> None:
        page.draw_rect(fitz.Rect(30, 30, 762, 582), color=_BORDER, width=3)
        page.draw_rect(fitz.Rect(40, 40, 752, 572), color=_BORDER_INNER, width=1)
        corner = 30
        for x, y in ((30, 30), (732, 30), (30, 552), (732, 552)):
            page.draw_rect(fitz.Rect(x, y, x + corner, y + corner), color=_BORDER, width=2)

    def render(self, fields: CertificateFields) -> bytes:
        doc = fitz.open()
        try:
            page = doc.new_page(width=LETTER_LANDSCAPE[0], height=LETTER_LANDSCAPE[1])
            self._draw_border(page)

            self._centered(page, 150, "CERTIFICATE", size=36, bold=True, color=_INK)
            self._centered(page, 185, "of Completion", size=18, color=_MUTED)
            self._centered(
                page, 260, fields.recipient_name.strip(), size=28, bold=True, color=_INK
            )
            self._centered(page, 300, "has successfully completed the course", size=16)
            self._centered(page, 340, fields.course_name, size=22, bold=True, color=_INK)

            if fields.description:
                # Overflow past the box is dropped.
                writer = fitz.TextWriter(page.rect)
                writer.fill_textbox(
                    fitz.Rect(96, 355, 696, 415),
                    fields.description,
                    font=pick_font(fields.description, REGULAR_FONTS),
                    fontsize=11,
                    align=fitz.TEXT_ALIGN_CENTER,
                    warn=None,
                )
                writer.write_text(page, color=_MUTED)

            self._centered(
                page, 440, f"Issued on {format_certificate_date(fields.issue_date)}", size=12
            )
            if fields.expiration_date is not None:
                self._centered(
                    page,
                    458,
                    f"Valid until {format_certificate_date(fields.expiration_date)}",
                    size=10,
                    color=_MUTED,
                )
            self._centered(
                page,
                476,
                f"Certificate Number: {fields.certificate_number}",
                size=10,
                color=_FAINT,
            )

            for x0, caption in ((150, "Issuer Signature"), (450, "Director Signature")):
                page.draw_line(fitz.Point(x0, 520), fitz.Point(x0 + 150, 520), color=_BODY, width=1)
                caption_width = pick_font(caption, REGULAR_FONTS).text_length(caption, fontsize=10)
                self._write(page, x0 + (150 - caption_width) / 2, 535, caption, size=10)

            self._centered(page, 560, f"Issued by: {fields.issuer_name}", size=8, color=_FAINT)

            _draw_stamp(page, fields, self._stamp_reason)
            return doc.tobytes(garbage=3, deflate=True)
        finally:
            doc.close()


class CertificateRenderer:
    def __init__(self, template_path: Path, fonts_dir: Path, stamp_reason: str) -> None:
        self._template = TemplateStrategy(template_path, fonts_dir, stamp_reason)
        self._fallback = FallbackStrategy(stamp_reason)

    def render_document(self, fields: CertificateFields) -> RenderedDocument:
        start = time.monotonic()
        strategy: RenderStrategy = self._fallback
        content: bytes | None = None

        if self._template.is_available():
            try:
                content = self._template.render(fields)
                strategy = self._template
            except RenderFailure as e:
                logger.warning(
                    "Template rendering failed for %s, using built-in layout: %s",
                    fields.certificate_number,
                    e,
                )
        else:
            logger.debug("No certificate template on disk, using built-in layout")

        if content is None:
            content = self._fallback.render(fields)

        RENDERS.labels(strategy=strategy.kind.value).inc()
        RENDER_DURATION.observe(time.monotonic() - start)
        logger.info(
            "Rendered certificate %s strategy=%s (%d bytes)",
            fields.certificate_number,
            strategy.kind.value,
            len(content),
        )
        return RenderedDocument(content=content, strategy=strategy.kind)

    def render(self, fields: CertificateFields) -> bytes:
        return self.render_document(fields).content
