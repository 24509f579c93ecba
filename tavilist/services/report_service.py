"""
Project report — read-only projection plus PDF rendering (ReportLab).

    build_report_context(project_id, stage_ids)  → plain dict, no DB objects
    render_report_pdf(context, logo_url)         → PDF bytes
    generate_report(project_id, stage_ids, logo) → (bytes, filename)

Images (attachments, signatures, logo) are fetched one by one with
REPORT_IMAGE_TIMEOUT; a failed image is logged and skipped, never fatal.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
from datetime import datetime, timezone

from flask import current_app
from PIL import Image, UnidentifiedImageError
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from tavilist.core.exceptions import StorageError
from tavilist.integrations import storage_gateway as storage_module
from tavilist.models import db
from tavilist.models.project import PROJECT_STATUS_LABELS
from tavilist.models.stage import STAGE_STATUS_COLORS, STAGE_STATUS_LABELS, Stage
from tavilist.services import project_service, stage_service

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 20 * mm
BOTTOM_MARGIN = 20 * mm
CONTENT_WIDTH = PAGE_WIDTH - 2 * MARGIN

IMAGES_PER_ROW = 3
IMAGE_WIDTH = 50 * mm
IMAGE_HEIGHT = 35 * mm
IMAGE_GAP = 5 * mm

_GREY_BOX = colors.HexColor("#f3f4f6")
_STAGE_HEADER = colors.HexColor("#f9fafb")
_SEPARATOR = colors.HexColor("#e5e7eb")
_MUTED = colors.HexColor("#6b7280")
_GREEN = colors.HexColor("#22c55e")
_GREEN_BG = colors.HexColor("#f0fdf4")
_GREEN_TEXT = colors.HexColor("#166534")


def _fmt_date(value) -> str:
    return value.strftime("%d/%m/%Y") if value else "-"


def _fmt_datetime(value) -> str:
    return value.strftime("%d/%m/%Y às %H:%M") if value else "-"


def slugify(name: str) -> str:
    slug = re.sub(r"\s+", "-", (name or "").strip().lower())
    return re.sub(r"[^\w-]", "", slug) or "obra"


# ═══════════════════════════════════════════════════════════════════════════
#  Projection
# ═══════════════════════════════════════════════════════════════════════════


def _stage_entry(stage: Stage) -> dict:
    sig = stage.signature
    signature = None
    if sig is not None and sig.is_signed:
        signature = {
            "signer_name": sig.signer_name,
            "signed_at": sig.signed_at,
            "signer_ip": sig.signer_ip,
            "image_url": sig.signature_image_url,
        }
    return {
        "id": stage.id,
        "ordinal": stage.ordinal,
        "title": stage.title,
        "description": stage.description,
        "status": stage.status,
        "status_label": STAGE_STATUS_LABELS.get(stage.status, stage.status),
        "status_color": STAGE_STATUS_COLORS.get(stage.status, "#9ca3af"),
        "responsibles": [p.full_name for p in stage_service.merged_responsibles(stage)],
        "images": [{"name": a.name, "url": a.url} for a in stage.attachments if a.is_image],
        "signature": signature,
    }


def build_report_context(project_id: int, stage_ids=None) -> dict:
    """Ordered projection of a project for rendering.

    ``stage_ids`` selects a subset; ids belonging to other projects are
    ignored. Progress always counts the whole project.
    """
    project = project_service.get_project(project_id)

    query = db.select(Stage).where(Stage.project_id == project.id).order_by(Stage.ordinal)
    if stage_ids:
        query = query.where(Stage.id.in_([int(s) for s in stage_ids]))
    stages = db.session.execute(query).scalars().all()

    project_signature = None
    if project.is_signed:
        project_signature = {
            "signer_name": project.signature_name,
            "signed_at": project.signed_at,
            "signer_ip": project.signature_ip,
            "image_url": project.signature_image_url,
        }

    return {
        "project": {
            "id": project.id,
            "name": project.name,
            "client_name": project.client_name,
            "status": project.status,
            "status_label": PROJECT_STATUS_LABELS.get(project.status, project.status),
            "start_date": project.start_date,
            "expected_end_date": project.expected_end_date,
            "completed_at": project.completed_at,
        },
        "stages": [_stage_entry(s) for s in stages],
        "progress": project_service.project_progress(project.id),
        "signature": project_signature,
    }


# ═══════════════════════════════════════════════════════════════════════════
#  Rendering
# ═══════════════════════════════════════════════════════════════════════════


class _NumberedCanvas(canvas.Canvas):
    """Canvas that stamps "Página N de M" on every page at save time."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_pages: list[dict] = []
        self.generated_at = datetime.now(timezone.utc)

    def showPage(self):
        self._saved_pages.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        total = len(self._saved_pages)
        for state in self._saved_pages:
            self.__dict__.update(state)
            self._draw_footer(total)
            super().showPage()
        super().save()

    def _draw_footer(self, total: int) -> None:
        self.setFont("Helvetica", 8)
        self.setFillColor(_MUTED)
        self.drawString(
            MARGIN, 10 * mm,
            f"Relatório gerado pelo TaviList em {self.generated_at.strftime('%d/%m/%Y')} "
            f"- Página {self._pageNumber} de {total}",
        )


def _load_image(url: str | None):
    """Fetch and decode an image; returns an ImageReader or None."""
    if not url:
        return None
    try:
        if url.startswith("data:image/"):
            raw = base64.b64decode(url.split(",", 1)[1], validate=True)
        else:
            raw = storage_module.storage_gateway.fetch(
                url, timeout=current_app.config.get("REPORT_IMAGE_TIMEOUT", 10)
            )
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (StorageError, UnidentifiedImageError, OSError, binascii.Error, ValueError, IndexError) as exc:
        logger.warning("Report image skipped url=%s error=%s", url[:120], exc)
        return None
    if img.mode not in ("RGB", "RGBA", "L"):
        img = img.convert("RGBA")
    return ImageReader(img)


class _ReportWriter:
    """y-cursor layout over a numbered canvas. Coordinates are bottom-up."""

    def __init__(self, buffer: io.BytesIO):
        self.c = _NumberedCanvas(buffer, pagesize=A4)
        self.y = PAGE_HEIGHT - MARGIN

    def ensure_space(self, needed: float) -> None:
        if self.y - needed < BOTTOM_MARGIN:
            self.c.showPage()
            self.y = PAGE_HEIGHT - MARGIN

    def text(self, x, value, *, font="Helvetica", size=10, color=colors.black):
        self.c.setFont(font, size)
        self.c.setFillColor(color)
        self.c.drawString(x, self.y, value)
        self.c.setFillColor(colors.black)

    def label_value(self, label: str, value: str, *, x=MARGIN + 5 * mm, offset=35 * mm,
                    color=colors.black):
        self.text(x, label, font="Helvetica-Bold", color=color)
        self.text(x + offset, value, color=color)

    # ── Sections ─────────────────────────────────────────────────────────

    def header(self, project: dict, logo) -> None:
        if logo is not None:
            self.c.drawImage(logo, MARGIN, self.y - 15 * mm, width=40 * mm, height=15 * mm,
                             preserveAspectRatio=True, mask="auto")
            self.y -= 22 * mm
        self.text(MARGIN, "Relatório da Obra", font="Helvetica-Bold", size=22)
        self.y -= 10 * mm
        self.text(MARGIN, project["name"], size=16)
        self.y -= 10 * mm

    def info_box(self, project: dict) -> None:
        height = 40 * mm
        self.c.setFillColor(_GREY_BOX)
        self.c.rect(MARGIN, self.y - height, CONTENT_WIDTH, height, stroke=0, fill=1)
        self.y -= 8 * mm
        rows = [
            ("Cliente:", project["client_name"]),
            ("Status:", project["status_label"]),
            ("Data de Início:", _fmt_date(project["start_date"])),
            ("Data Prevista:", _fmt_date(project["expected_end_date"])),
        ]
        for label, value in rows:
            self.label_value(label, value)
            self.y -= 8 * mm
        self.y -= 12 * mm

    def progress(self, progress: dict) -> None:
        self.ensure_space(30 * mm)
        self.text(MARGIN, f"Progresso: {progress['percent']}%", font="Helvetica-Bold", size=12)
        self.y -= 10 * mm
        self.c.setFillColor(_SEPARATOR)
        self.c.rect(MARGIN, self.y, CONTENT_WIDTH, 8 * mm, stroke=0, fill=1)
        if progress["percent"]:
            self.c.setFillColor(_GREEN)
            self.c.rect(MARGIN, self.y, CONTENT_WIDTH * progress["percent"] / 100, 8 * mm,
                        stroke=0, fill=1)
        self.y -= 7 * mm
        self.text(MARGIN, f"{progress['approved']} de {progress['total']} etapas concluídas")
        self.y -= 12 * mm

    def stage(self, stage: dict) -> None:
        self.ensure_space(40 * mm)

        # Header bar with coloured status badge
        self.c.setFillColor(_STAGE_HEADER)
        self.c.rect(MARGIN, self.y - 4 * mm, CONTENT_WIDTH, 12 * mm, stroke=0, fill=1)
        self.text(MARGIN + 3 * mm, f"{stage['ordinal']}. {stage['title']}", font="Helvetica-Bold", size=11)

        self.c.setFont("Helvetica", 8)
        badge_w = self.c.stringWidth(stage["status_label"], "Helvetica", 8) + 6 * mm
        badge_x = MARGIN + CONTENT_WIDTH - badge_w - 3 * mm
        self.c.setFillColor(colors.HexColor(stage["status_color"]))
        self.c.roundRect(badge_x, self.y - 2 * mm, badge_w, 7 * mm, 2 * mm, stroke=0, fill=1)
        self.c.setFillColor(colors.white)
        self.c.drawString(badge_x + 3 * mm, self.y, stage["status_label"])
        self.c.setFillColor(colors.black)
        self.y -= 12 * mm

        responsible = ", ".join(stage["responsibles"]) or "Não atribuído"
        self.text(MARGIN + 5 * mm, f"Responsável: {responsible}", size=9)
        self.y -= 6 * mm

        if stage["description"]:
            for line in simpleSplit(stage["description"], "Helvetica", 9, CONTENT_WIDTH - 10 * mm):
                self.ensure_space(6 * mm)
                self.text(MARGIN + 5 * mm, line, size=9, color=_MUTED)
                self.y -= 5 * mm

        self.image_grid(stage["images"])

        if stage["signature"]:
            self.attestation(stage["signature"])

        self.c.setStrokeColor(_SEPARATOR)
        self.c.line(MARGIN, self.y, MARGIN + CONTENT_WIDTH, self.y)
        self.y -= 8 * mm

    def image_grid(self, images: list[dict]) -> None:
        readers = [r for r in (_load_image(img["url"]) for img in images) if r is not None]
        if not readers:
            self.y -= 4 * mm
            return

        self.ensure_space(IMAGE_HEIGHT + 12 * mm)
        self.text(MARGIN + 5 * mm, "Fotos:", font="Helvetica-Bold", size=9)
        self.y -= 3 * mm

        for start in range(0, len(readers), IMAGES_PER_ROW):
            self.ensure_space(IMAGE_HEIGHT + 5 * mm)
            x = MARGIN + 5 * mm
            for reader in readers[start:start + IMAGES_PER_ROW]:
                self.c.drawImage(reader, x, self.y - IMAGE_HEIGHT, width=IMAGE_WIDTH,
                                 height=IMAGE_HEIGHT, preserveAspectRatio=True, mask="auto")
                x += IMAGE_WIDTH + IMAGE_GAP
            self.y -= IMAGE_HEIGHT + IMAGE_GAP
        self.y -= 5 * mm

    def attestation(self, signature: dict) -> None:
        image = _load_image(signature.get("image_url"))
        box_height = (70 if image is not None else 40) * mm
        self.ensure_space(box_height + 5 * mm)

        self.c.setFillColor(_GREEN_BG)
        self.c.setStrokeColor(_GREEN)
        self.c.setLineWidth(0.5)
        top = self.y
        self.c.rect(MARGIN, top - box_height, CONTENT_WIDTH, box_height, stroke=1, fill=1)
        self.y -= 8 * mm

        self.text(MARGIN + 5 * mm, "Atestado de Recebimento", font="Helvetica-Bold", size=12,
                  color=_GREEN_TEXT)
        self.y -= 10 * mm
        self.label_value("Assinado por:", signature["signer_name"] or "-", color=_GREEN_TEXT)
        self.y -= 8 * mm
        self.label_value("Data:", _fmt_datetime(signature["signed_at"]), color=_GREEN_TEXT)
        self.y -= 8 * mm
        if signature.get("signer_ip"):
            self.label_value("IP:", signature["signer_ip"], color=_GREEN_TEXT)
            self.y -= 8 * mm

        if image is not None:
            self.text(MARGIN + 5 * mm, "Assinatura:", font="Helvetica-Bold")
            self.c.drawImage(image, MARGIN + 5 * mm, self.y - 27 * mm, width=60 * mm, height=25 * mm,
                             preserveAspectRatio=True, mask="auto")
        self.y = top - box_height - 5 * mm

    def finish(self) -> None:
        self.c.showPage()
        self.c.save()


def render_report_pdf(context: dict, logo_url: str | None = None) -> bytes:
    buffer = io.BytesIO()
    writer = _ReportWriter(buffer)

    writer.header(context["project"], _load_image(logo_url))
    writer.info_box(context["project"])
    writer.progress(context["progress"])

    if context["stages"]:
        writer.ensure_space(20 * mm)
        writer.text(MARGIN, "Etapas", font="Helvetica-Bold", size=14)
        writer.y -= 10 * mm
        for stage in context["stages"]:
            writer.stage(stage)

    if context["signature"]:
        writer.attestation(context["signature"])

    writer.finish()
    return buffer.getvalue()


def generate_report(project_id: int, stage_ids=None, logo_url: str | None = None) -> tuple[bytes, str]:
    context = build_report_context(project_id, stage_ids)
    pdf = render_report_pdf(context, logo_url)
    logger.info(
        "Report generated project_id=%s stages=%d bytes=%d",
        project_id, len(context["stages"]), len(pdf),
        extra={"project_id": project_id, "event_type": "report_generated"},
    )
    return pdf, f"relatorio-{slugify(context['project']['name'])}.pdf"
