"""
Signature workflow tests — stage tokens, public signing, project variant.

Storage runs on the local filesystem backend (TestingConfig leaves
STORAGE_URL unset); tests that must prove storage is never reached patch
the module-level ``storage_gateway`` singleton.
"""

from unittest.mock import MagicMock, patch

import pytest

import tavilist.integrations.storage_gateway as storage_module
from tavilist.core.exceptions import AlreadySignedError, InvalidTransitionError, StorageError
from tavilist.models import db
from tavilist.models.project import Project
from tavilist.models.signature import StageSignature
from tavilist.models.stage import Stage, StageAttachment
from tavilist.services import signature_service, stage_service


def _make_approved_stage(project_id, title="Fundação"):
    stage = stage_service.create_stage(project_id, {"title": title})
    stage_service.start_stage(stage.id)
    stage_service.submit_stage(stage.id, "ok")
    stage_service.approve_stage(stage.id)
    return stage


def _add_attachment(stage_id, name, content_type):
    att = StageAttachment(
        stage_id=stage_id, name=name, content_type=content_type, size=10,
        url=f"/media/stage-attachments/{stage_id}/{name}", storage_path=f"{stage_id}/{name}",
    )
    db.session.add(att)
    db.session.commit()
    return att


# ═══════════════════════════════════════════════════════════════
# Requesting
# ═══════════════════════════════════════════════════════════════


def test_request_signature_issues_token(client, project):
    stage = _make_approved_stage(project.id)
    res = client.post(f"/api/v1/stages/{stage.id}/signature")
    assert res.status_code == 200
    body = res.get_json()
    token = body["token"]
    assert len(token) == 36
    assert body["sign_link"] == f"https://obras.example.com/assinar/{token}"
    assert body["view_link"] == f"https://obras.example.com/etapa/{token}"


def test_second_request_refreshes_same_token(project):
    stage = _make_approved_stage(project.id)
    first = signature_service.request_signature(stage.id)
    token, sent_at = first.token, first.link_sent_at
    second = signature_service.request_signature(stage.id)
    assert second.token == token
    assert second.link_sent_at >= sent_at
    count = db.session.execute(
        db.select(db.func.count(StageSignature.id)).where(StageSignature.stage_id == stage.id)
    ).scalar()
    assert count == 1


def test_request_on_non_approved_stage_is_409(client, project):
    stage = stage_service.create_stage(project.id, {"title": "Alvenaria"})
    stage_service.start_stage(stage.id)
    res = client.post(f"/api/v1/stages/{stage.id}/signature")
    assert res.status_code == 409
    assert res.get_json()["code"] == "ERR_CONFLICT_STATE"
    assert db.session.execute(db.select(StageSignature)).first() is None


def test_request_on_signed_stage_raises(project, make_png):
    stage = _make_approved_stage(project.id)
    sig = signature_service.request_signature(stage.id)
    signature_service.record_signature(sig.token, "João Silva", make_png(), "1.2.3.4")
    with pytest.raises(AlreadySignedError):
        signature_service.request_signature(stage.id)


# ═══════════════════════════════════════════════════════════════
# Public resolve / gallery
# ═══════════════════════════════════════════════════════════════


def test_resolve_by_token_exposes_only_its_stage(client, project):
    stage = _make_approved_stage(project.id)
    other = _make_approved_stage(project.id, "Telhado")
    _add_attachment(stage.id, "foto.jpg", "image/jpeg")
    _add_attachment(other.id, "outra.jpg", "image/jpeg")
    token = signature_service.request_signature(stage.id).token

    res = client.get(f"/api/v1/public/signatures/{token}")
    assert res.status_code == 200
    body = res.get_json()
    assert body["stage"]["id"] == stage.id
    assert body["project"] == {"name": "Casa Jardim", "client_name": "João Silva"}
    assert [a["name"] for a in body["attachments"]] == ["foto.jpg"]
    assert body["signature"]["signed"] is False
    assert "client_email" not in str(body)


def test_unknown_token_is_404(client):
    res = client.get("/api/v1/public/signatures/00000000-0000-0000-0000-000000000000")
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_gallery_lists_images_only(client, project):
    stage = _make_approved_stage(project.id)
    _add_attachment(stage.id, "foto.png", "image/png")
    _add_attachment(stage.id, "memorial.pdf", "application/pdf")
    token = signature_service.request_signature(stage.id).token

    body = client.get(f"/api/v1/public/signatures/{token}/gallery").get_json()
    assert [i["name"] for i in body["images"]] == ["foto.png"]
    assert body["project"]["name"] == "Casa Jardim"


# ═══════════════════════════════════════════════════════════════
# Signing
# ═══════════════════════════════════════════════════════════════


def test_sign_records_everything(client, project, make_png):
    stage = _make_approved_stage(project.id)
    token = signature_service.request_signature(stage.id).token

    res = client.post(
        f"/api/v1/public/signatures/{token}/sign",
        json={"name": "João da Silva", "signature": make_png()},
        headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
    )
    assert res.status_code == 200
    assert res.get_json()["success"] is True

    db.session.expire_all()
    sig = db.session.execute(
        db.select(StageSignature).where(StageSignature.token == token)
    ).scalar_one()
    assert sig.signer_name == "João da Silva"
    assert sig.signer_ip == "203.0.113.7"
    assert sig.signed_at is not None
    assert sig.signature_image_url.startswith(f"/media/signatures/stage-{token}-")
    assert sig.signature_image_url.endswith(".png")


def test_second_sign_fails_and_first_is_kept(client, project, make_png):
    stage = _make_approved_stage(project.id)
    token = signature_service.request_signature(stage.id).token
    url = f"/api/v1/public/signatures/{token}/sign"

    assert client.post(url, json={"name": "João Silva", "signature": make_png()}).status_code == 200
    res = client.post(url, json={"name": "Outra Pessoa", "signature": make_png()})
    assert res.status_code == 409
    assert res.get_json()["code"] == "ERR_ALREADY_SIGNED"

    db.session.expire_all()
    sig = db.session.execute(
        db.select(StageSignature).where(StageSignature.token == token)
    ).scalar_one()
    assert sig.signer_name == "João Silva"


def test_lost_race_raises_already_signed(project, make_png):
    stage = _make_approved_stage(project.id)
    token = signature_service.request_signature(stage.id).token

    def _sign_concurrently(bucket, path, data, content_type):
        # Another request wins between our read and our conditional update
        db.session.execute(
            db.update(StageSignature)
            .where(StageSignature.token == token)
            .values(signer_name="Primeiro", signed_at=db.func.current_timestamp())
        )
        return "/media/signatures/x.png"

    with patch.object(storage_module, "storage_gateway") as gw:
        gw.upload.side_effect = _sign_concurrently
        with pytest.raises(AlreadySignedError):
            signature_service.record_signature(token, "Segundo", make_png(), "1.1.1.1")


@pytest.mark.parametrize("name", ["<script>", "J", "Robert'); DROP TABLE--", "Ana123", "x" * 101])
def test_invalid_name_never_reaches_storage(client, project, make_png, name):
    stage = _make_approved_stage(project.id)
    token = signature_service.request_signature(stage.id).token

    with patch.object(storage_module, "storage_gateway") as gw:
        res = client.post(
            f"/api/v1/public/signatures/{token}/sign",
            json={"name": name, "signature": make_png()},
        )
        gw.upload.assert_not_called()
    assert res.status_code == 422


@pytest.mark.parametrize("name", ["João da Silva", "Ana-Maria O'Neil", "Dr. José Araújo"])
def test_allowed_names(name):
    assert signature_service.validate_signer_name(f"  {name} ") == name


def test_bad_images_rejected_before_storage(client, project, make_png):
    stage = _make_approved_stage(project.id)
    token = signature_service.request_signature(stage.id).token
    url = f"/api/v1/public/signatures/{token}/sign"

    bad = [
        "data:image/gif;base64,R0lGODlhAQABAAAAACw=",        # wrong type
        "data:image/png;base64,@@@not-base64@@@",           # bad base64
        "data:image/png;base64,aGVsbG8gd29ybGQ=",           # not an image
        make_png(fmt="JPEG", mime="png"),                   # type mismatch
        "",                                                 # missing
    ]
    with patch.object(storage_module, "storage_gateway") as gw:
        for data_url in bad:
            res = client.post(url, json={"name": "João Silva", "signature": data_url})
            assert res.status_code == 422, data_url[:40]
        gw.upload.assert_not_called()


def test_oversized_signature_rejected(app, client, project, make_png):
    stage = _make_approved_stage(project.id)
    token = signature_service.request_signature(stage.id).token
    original = app.config["SIGNATURE_MAX_BYTES"]
    app.config["SIGNATURE_MAX_BYTES"] = 10
    try:
        res = client.post(
            f"/api/v1/public/signatures/{token}/sign",
            json={"name": "João Silva", "signature": make_png()},
        )
    finally:
        app.config["SIGNATURE_MAX_BYTES"] = original
    assert res.status_code == 422
    assert res.get_json()["details"]["signature"] == "too_large"


def test_storage_failure_records_nothing(client, project, make_png):
    stage = _make_approved_stage(project.id)
    token = signature_service.request_signature(stage.id).token

    with patch.object(storage_module, "storage_gateway") as gw:
        gw.upload.side_effect = StorageError("bucket unavailable")
        res = client.post(
            f"/api/v1/public/signatures/{token}/sign",
            json={"name": "João Silva", "signature": make_png()},
        )
    assert res.status_code == 502
    assert res.get_json()["code"] == "ERR_STORAGE"
    db.session.expire_all()
    sig = db.session.execute(
        db.select(StageSignature).where(StageSignature.token == token)
    ).scalar_one()
    assert sig.signed_at is None


def test_delete_stage_removes_signature(client, project):
    stage = _make_approved_stage(project.id)
    token = signature_service.request_signature(stage.id).token
    client.delete(f"/api/v1/stages/{stage.id}")
    assert client.get(f"/api/v1/public/signatures/{token}").status_code == 404


# ═══════════════════════════════════════════════════════════════
# Project-level signature
# ═══════════════════════════════════════════════════════════════


def _completed_project(unlocked=True):
    p = Project(
        name="Reforma Loja", client_name="Rita Alves", client_email="rita@example.com",
        status="completed", signature_unlocked=unlocked,
    )
    db.session.add(p)
    db.session.commit()
    return p


def test_project_signature_requires_release():
    p = _completed_project(unlocked=False)
    with pytest.raises(InvalidTransitionError):
        signature_service.request_project_signature(p.id)
    signature_service.release_project_signature(p.id)
    _, token = signature_service.request_project_signature(p.id)
    assert token


def test_project_signature_requires_completed(project):
    project.signature_unlocked = True
    db.session.commit()
    with pytest.raises(InvalidTransitionError):
        signature_service.request_project_signature(project.id)


def test_project_token_rotates_and_old_link_dies(client):
    p = _completed_project()
    _, first = signature_service.request_project_signature(p.id)
    _, second = signature_service.request_project_signature(p.id)
    assert first != second
    assert client.get(f"/api/v1/public/projects/{first}").status_code == 404
    assert client.get(f"/api/v1/public/projects/{second}").status_code == 200


def test_sign_project_once(client, make_png):
    p = _completed_project()
    _, token = signature_service.request_project_signature(p.id)
    url = f"/api/v1/public/projects/{token}/sign"

    res = client.post(url, json={"name": "Rita Alves", "signature": make_png()},
                      headers={"X-Real-IP": "198.51.100.4"})
    assert res.status_code == 200
    assert client.post(url, json={"name": "Rita Alves", "signature": make_png()}).status_code == 409

    db.session.expire_all()
    signed = db.session.get(Project, p.id)
    assert signed.signature_name == "Rita Alves"
    assert signed.signature_ip == "198.51.100.4"
    with pytest.raises(AlreadySignedError):
        signature_service.request_project_signature(p.id)


def test_client_ip_defaults_to_unavailable(client, project, make_png):
    stage = _make_approved_stage(project.id)
    token = signature_service.request_signature(stage.id).token
    gw = MagicMock()
    gw.upload.return_value = "/media/signatures/x.png"
    with patch.object(storage_module, "storage_gateway", gw):
        res = client.post(
            f"/api/v1/public/signatures/{token}/sign",
            json={"name": "João Silva", "signature": make_png()},
        )
    assert res.status_code == 200
    db.session.expire_all()
    sig = db.session.get(Stage, stage.id).signature
    assert sig.signer_ip == "unavailable"


def _sign_with_headers(client, project, make_png, headers):
    stage = _make_approved_stage(project.id)
    token = signature_service.request_signature(stage.id).token
    gw = MagicMock()
    gw.upload.return_value = "/media/signatures/x.png"
    with patch.object(storage_module, "storage_gateway", gw):
        res = client.post(
            f"/api/v1/public/signatures/{token}/sign",
            json={"name": "João Silva", "signature": make_png()},
            headers=headers,
        )
    assert res.status_code == 200
    db.session.expire_all()
    return db.session.get(Stage, stage.id).signature.signer_ip


def test_oversized_forwarded_for_is_not_stored(client, project, make_png):
    ip = _sign_with_headers(client, project, make_png, {"X-Forwarded-For": "A" * 300})
    assert ip == "unavailable"


def test_garbage_forwarded_for_falls_back_to_real_ip(client, project, make_png):
    ip = _sign_with_headers(
        client, project, make_png,
        {"X-Forwarded-For": "not-an-ip, 10.0.0.1", "X-Real-IP": "198.51.100.9"},
    )
    assert ip == "198.51.100.9"


def test_ipv6_client_ip_accepted(client, project, make_png):
    ip = _sign_with_headers(client, project, make_png, {"X-Forwarded-For": "2001:db8::1"})
    assert ip == "2001:db8::1"
    assert len(ip) <= 64
