"""
PDF report tests.

Rendering runs for real through ReportLab; remote image fetches are mocked
on the storage gateway singleton.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

import tavilist.integrations.storage_gateway as storage_module
from tavilist.core.exceptions import NotFoundError, StorageError
from tavilist.models import db
from tavilist.models.project import Project
from tavilist.models.signature import StageSignature
from tavilist.models.stage import StageAttachment
from tavilist.services import report_service, stage_service


def _add_attachment(stage, url, name="foto.png", content_type="image/png"):
    att = StageAttachment(
        stage_id=stage.id, name=name, content_type=content_type,
        size=100, url=url, storage_path=f"{stage.id}/{name}",
    )
    db.session.add(att)
    db.session.commit()
    return att


def _approve(stage):
    stage_service.start_stage(stage.id)
    stage_service.submit_stage(stage.id)
    stage_service.approve_stage(stage.id)


# ═══════════════════════════════════════════════════════════════
# Context projection
# ═══════════════════════════════════════════════════════════════


def test_context_orders_by_ordinal(project):
    a = stage_service.create_stage(project.id, {"title": "Fundação"})
    b = stage_service.create_stage(project.id, {"title": "Estrutura"})
    c = stage_service.create_stage(project.id, {"title": "Telhado"})

    ctx = report_service.build_report_context(project.id, [c.id, a.id])
    assert [s["title"] for s in ctx["stages"]] == ["Fundação", "Telhado"]

    full = report_service.build_report_context(project.id)
    assert [s["id"] for s in full["stages"]] == [a.id, b.id, c.id]


def test_context_ignores_other_projects_stages(project):
    other = Project(name="Outra", client_name="X", client_email="x@example.com")
    db.session.add(other)
    db.session.commit()
    foreign = stage_service.create_stage(other.id, {"title": "Alheia"})
    own = stage_service.create_stage(project.id, {"title": "Própria"})

    ctx = report_service.build_report_context(project.id, [foreign.id, own.id])
    assert [s["id"] for s in ctx["stages"]] == [own.id]


def test_context_progress_counts_whole_project(project):
    a = stage_service.create_stage(project.id, {"title": "A"})
    stage_service.create_stage(project.id, {"title": "B"})
    _approve(a)
    ctx = report_service.build_report_context(project.id, [a.id])
    assert ctx["progress"] == {"approved": 1, "total": 2, "percent": 50}


def test_context_includes_images_and_signature(project, collaborator, make_png):
    stage = stage_service.create_stage(project.id, {"title": "Piso", "responsible_ids": [collaborator.id]})
    _add_attachment(stage, make_png())
    _add_attachment(stage, "https://files.example.com/memorial.pdf", "memorial.pdf", "application/pdf")
    _approve(stage)
    db.session.add(StageSignature(
        stage_id=stage.id, token="tok-piso", signer_name="João Silva",
        signed_at=datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc),
        signer_ip="200.1.2.3", signature_image_url=make_png(),
    ))
    db.session.commit()

    entry = report_service.build_report_context(project.id)["stages"][0]
    assert entry["responsibles"] == ["Carlos Lima"]
    assert [i["name"] for i in entry["images"]] == ["foto.png"]
    assert entry["signature"]["signer_name"] == "João Silva"
    assert entry["status_label"] == "Aprovada"


def test_unsigned_token_is_not_an_attestation(project):
    stage = stage_service.create_stage(project.id, {"title": "Piso"})
    _approve(stage)
    db.session.add(StageSignature(stage_id=stage.id, token="tok-open"))
    db.session.commit()
    assert report_service.build_report_context(project.id)["stages"][0]["signature"] is None


def test_context_unknown_project():
    with pytest.raises(NotFoundError):
        report_service.build_report_context(9999)


# ═══════════════════════════════════════════════════════════════
# Rendering
# ═══════════════════════════════════════════════════════════════


@pytest.mark.parametrize("name,expected", [
    ("Casa Jardim", "casa-jardim"),
    ("  Reforma   Loja 2 ", "reforma-loja-2"),
    ("Obra #1 (fase B)", "obra-1-fase-b"),
    ("", "obra"),
    ("!!!", "obra"),
])
def test_slugify(name, expected):
    assert report_service.slugify(name) == expected


def test_generate_report_pdf(project, make_png):
    stage = stage_service.create_stage(project.id, {"title": "Fundação", "description": "Sapatas " * 80})
    for i in range(5):
        _add_attachment(stage, make_png(size=(60, 40)), f"foto{i}.png")
    _approve(stage)

    pdf, filename = report_service.generate_report(project.id, logo_url=make_png())
    assert pdf.startswith(b"%PDF")
    assert filename == "relatorio-casa-jardim.pdf"


def test_generate_report_without_stages(project):
    pdf, _ = report_service.generate_report(project.id)
    assert pdf.startswith(b"%PDF")


def test_many_stages_paginate(project):
    for i in range(25):
        stage_service.create_stage(project.id, {"title": f"Etapa {i}", "description": "Detalhe"})

    totals = []
    original = report_service._NumberedCanvas._draw_footer

    def _spy(canvas_self, total):
        totals.append(total)
        original(canvas_self, total)

    with patch.object(report_service._NumberedCanvas, "_draw_footer", _spy):
        report_service.generate_report(project.id)

    # Every page gets a footer carrying the final page count
    assert totals[0] >= 2
    assert totals == [totals[0]] * totals[0]


def test_image_fetch_failure_is_skipped(project, caplog):
    stage = stage_service.create_stage(project.id, {"title": "Fundação"})
    _add_attachment(stage, "https://files.example.com/missing.png")

    with patch.object(
        storage_module.storage_gateway, "fetch", side_effect=StorageError("404 Not Found"),
    ) as fetch:
        pdf, _ = report_service.generate_report(project.id)

    assert pdf.startswith(b"%PDF")
    fetch.assert_called_once()
    assert "Report image skipped" in caplog.text


def test_corrupt_image_is_skipped(project):
    stage = stage_service.create_stage(project.id, {"title": "Fundação"})
    _add_attachment(stage, "data:image/png;base64,bm90IGFuIGltYWdl")
    pdf, _ = report_service.generate_report(project.id)
    assert pdf.startswith(b"%PDF")


# ═══════════════════════════════════════════════════════════════
# API
# ═══════════════════════════════════════════════════════════════


def test_report_pdf_endpoint(client, project):
    stage_service.create_stage(project.id, {"title": "Fundação"})
    res = client.post(f"/api/v1/projects/{project.id}/report/pdf", json={})
    assert res.status_code == 200
    assert res.mimetype == "application/pdf"
    assert "relatorio-casa-jardim.pdf" in res.headers["Content-Disposition"]
    assert res.data.startswith(b"%PDF")


def test_report_pdf_rejects_bad_stage_ids(client, project):
    res = client.post(f"/api/v1/projects/{project.id}/report/pdf", json={"stage_ids": "1,2"})
    assert res.status_code == 422


def test_report_pdf_unknown_project(client):
    res = client.post("/api/v1/projects/9999/report/pdf", json={})
    assert res.status_code == 404
