"""
PDF page rasterization for the transcription pipeline.

Intent:
- Open an uploaded source document once and render single pages on demand,
  so each transcription task pulls exactly the bitmap it needs.
- Keep memory bounded: only one page bitmap is alive per task.

Security/Permissions:
- Pure computation on provided bytes. Callers must ensure the PDF originates
  from an authorized upload and is within the page/size limits.

Note:
- pdfium is not thread-safe; renders on one document are serialized through
  an instance lock while the (slow) completion calls run concurrently.
"""

from __future__ import annotations

from dataclasses import dataclass
import io
from threading import Lock

from lessonforge.curriculum.errors import UpstreamServiceError


@dataclass
class RenderPage:
    page_number: int  # 1-based
    width: int
    height: int
    data: bytes  # PNG-encoded


class PdfRenderError(UpstreamServiceError):
    code = "render_failed"


def _import_pdfium():
    try:
        import pypdfium2 as pdfium  # type: ignore
        return pdfium
    except Exception as exc:  # pragma: no cover - surfaced in tests via mocking
        raise PdfRenderError("pypdfium2 is required for PDF rendering") from exc


class PdfPageRenderer:
    """Rendered view over one PDF document."""

    def __init__(self, pdf_bytes: bytes, *, dpi: int = 150) -> None:
        pdfium = _import_pdfium()
        try:
            self._doc = pdfium.PdfDocument(pdf_bytes)
        except Exception as exc:
            raise PdfRenderError("failed_to_open_pdf") from exc
        # PDF user space is 72 DPI
        self._scale = float(dpi) / 72.0 if dpi > 0 else 1.0
        self._lock = Lock()

    @property
    def page_count(self) -> int:
        return len(self._doc)

    def render_page(self, page_number: int) -> RenderPage:
        """Render a 1-based page to PNG bytes."""
        if page_number < 1 or page_number > self.page_count:
            raise PdfRenderError(f"page_out_of_range_{page_number}")
        with self._lock:
            try:
                page = self._doc[page_number - 1]
                bitmap = page.render(scale=self._scale)
                pil = bitmap.to_pil()
                if pil.mode not in ("RGB", "L"):
                    pil = pil.convert("RGB")
                buf = io.BytesIO()
                pil.save(buf, format="PNG")
            except Exception as exc:
                raise PdfRenderError(f"render_failed_on_page_{page_number}") from exc
        return RenderPage(page_number=page_number, width=pil.width, height=pil.height, data=buf.getvalue())

    def close(self) -> None:
        close = getattr(self._doc, "close", None)
        if callable(close):
            close()


__all__ = ["RenderPage", "PdfRenderError", "PdfPageRenderer"]
