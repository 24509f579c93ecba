"""
Notification dispatch tests — WhatsApp (Evolution API) and email (Resend).

Test strategy
-------------
Outbound HTTP is mocked by injecting a MagicMock ``requests.Session`` into
real gateway instances, swapped in with patch.object on the module-level
singletons. The gateway code (URL building, headers, body shape, error
wrapping) therefore runs for real.

ENCRYPTION_KEY is set by conftest before the app is created.
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

import tavilist.integrations.email_gateway as email_module
import tavilist.integrations.whatsapp_gateway as wa_module
from tavilist.core.exceptions import ValidationError
from tavilist.integrations.email_gateway import EmailGateway
from tavilist.integrations.whatsapp_gateway import WhatsAppGateway
from tavilist.models import db
from tavilist.models.project import Project
from tavilist.models.signature import StageSignature
from tavilist.models.whatsapp import WhatsAppConfig
from tavilist.services import notification_service, stage_service
from tavilist.utils.crypto import decrypt_secret, encrypt_secret


# ── Helper factories ─────────────────────────────────────────────────────────


def _resp(status=200, body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    payload = body if body is not None else {}
    resp.content = json.dumps(payload).encode()
    resp.text = json.dumps(payload)
    resp.json.return_value = payload
    return resp


def _make_config(api_key="evo-secret-key"):
    cfg = WhatsAppConfig(
        api_url="https://evo.example.com/",
        instance_name="obras",
        api_key_encrypted=encrypt_secret(api_key),
        connected=True,
    )
    db.session.add(cfg)
    db.session.commit()
    return cfg


def _wa_session(state="open", send_status=201, send_body=None):
    session = MagicMock()

    def _request(method, url, **kwargs):
        if "connectionState" in url:
            return _resp(200, {"instance": {"instanceName": "obras", "state": state}})
        return _resp(send_status, send_body if send_body is not None else {"key": {"id": "MSG1"}})

    session.request.side_effect = _request
    return session


def _make_approved_stage(project_id, title="Fundação", description=None):
    stage = stage_service.create_stage(project_id, {"title": title, "description": description})
    stage_service.start_stage(stage.id)
    stage_service.submit_stage(stage.id)
    stage_service.approve_stage(stage.id)
    return stage


# ═══════════════════════════════════════════════════════════════
# Phone normalisation
# ═══════════════════════════════════════════════════════════════


@pytest.mark.parametrize("raw,expected", [
    ("(11) 98888-7777", "5511988887777"),
    ("+55 11 98888-7777", "5511988887777"),
    ("5511988887777", "5511988887777"),
    ("1133334444", "551133334444"),
])
def test_normalize_phone(raw, expected):
    assert notification_service.normalize_phone(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "12345", "abc"])
def test_normalize_phone_rejects_short(raw):
    with pytest.raises(ValidationError):
        notification_service.normalize_phone(raw)


# ═══════════════════════════════════════════════════════════════
# Channel configuration
# ═══════════════════════════════════════════════════════════════


def test_save_config_encrypts_and_hides_key(client):
    res = client.put("/api/v1/settings/whatsapp", json={
        "api_url": "https://evo.example.com",
        "instance_name": "obras",
        "api_key": "super-secret",
    })
    assert res.status_code == 200
    body = res.get_json()["config"]
    assert body["has_api_key"] is True
    assert "super-secret" not in json.dumps(body)

    cfg = db.session.execute(db.select(WhatsAppConfig)).scalar_one()
    assert cfg.api_key_encrypted != "super-secret"
    assert decrypt_secret(cfg.api_key_encrypted) == "super-secret"


def test_update_config_keeps_key_when_omitted(client):
    _make_config("first-key")
    res = client.put("/api/v1/settings/whatsapp", json={
        "api_url": "https://evo2.example.com",
        "instance_name": "obras2",
    })
    assert res.status_code == 200
    cfg = db.session.execute(db.select(WhatsAppConfig)).scalar_one()
    assert cfg.api_url == "https://evo2.example.com"
    assert decrypt_secret(cfg.api_key_encrypted) == "first-key"
    assert db.session.execute(db.select(db.func.count(WhatsAppConfig.id))).scalar() == 1


def test_new_config_requires_key(client):
    res = client.put("/api/v1/settings/whatsapp", json={
        "api_url": "https://evo.example.com", "instance_name": "obras",
    })
    assert res.status_code == 422
    assert "api_key" in res.get_json()["details"]


def test_connection_test_persists_state(client):
    _make_config()
    gw = WhatsAppGateway(session=_wa_session(state="close"))
    with patch.object(wa_module, "whatsapp_gateway", gw):
        res = client.post("/api/v1/settings/whatsapp/test")
    assert res.get_json() == {"connected": False, "state": "close"}
    cfg = db.session.execute(db.select(WhatsAppConfig)).scalar_one()
    assert cfg.connected is False
    assert cfg.last_checked_at is not None


# ═══════════════════════════════════════════════════════════════
# Signature request via WhatsApp
# ═══════════════════════════════════════════════════════════════


def test_signature_request_sends_links(client, project):
    _make_config()
    stage = _make_approved_stage(project.id)
    session = _wa_session()
    with patch.object(wa_module, "whatsapp_gateway", WhatsAppGateway(session=session)):
        res = client.post(f"/api/v1/stages/{stage.id}/notify/signature-request", json={})

    assert res.status_code == 200
    body = res.get_json()
    token = body["token"]
    assert body["sign_link"] == f"https://obras.example.com/assinar/{token}"

    send_call = session.request.call_args_list[-1]
    method, url = send_call.args
    assert method == "POST"
    assert url == "https://evo.example.com/message/sendText/obras"
    assert send_call.kwargs["headers"]["apikey"] == "evo-secret-key"
    sent = send_call.kwargs["json"]
    assert sent["number"] == "5511988887777"
    assert sent["delay"] == 1500
    assert sent["linkPreview"] is False
    assert "Olá João Silva! 👋" in sent["text"]
    assert "A etapa *\"Fundação\"* (etapa 1) da obra *\"Casa Jardim\"*" in sent["text"]
    assert f"https://obras.example.com/etapa/{token}" in sent["text"]
    assert f"https://obras.example.com/assinar/{token}" in sent["text"]
    assert sent["text"].endswith("Equipe HubTav")


def test_disconnected_channel_is_503_and_sends_nothing(client, project):
    _make_config()
    stage = _make_approved_stage(project.id)
    session = _wa_session(state="close")
    with patch.object(wa_module, "whatsapp_gateway", WhatsAppGateway(session=session)):
        res = client.post(f"/api/v1/stages/{stage.id}/notify/signature-request", json={})

    assert res.status_code == 503
    assert res.get_json()["code"] == "ERR_CHANNEL_UNAVAILABLE"
    assert session.request.call_count == 1  # probe only
    db.session.expire_all()
    assert db.session.execute(db.select(WhatsAppConfig)).scalar_one().connected is False
    # No token was issued for a message that never left
    assert db.session.execute(db.select(StageSignature)).first() is None


def test_probe_network_error_is_503(client, project):
    _make_config()
    stage = _make_approved_stage(project.id)
    session = MagicMock()
    session.request.side_effect = requests.ConnectionError("refused")
    with patch.object(wa_module, "whatsapp_gateway", WhatsAppGateway(session=session)):
        res = client.post(f"/api/v1/stages/{stage.id}/notify/summary", json={})
    assert res.status_code == 503


def test_unconfigured_channel_is_503(client, project):
    stage = _make_approved_stage(project.id)
    res = client.post(f"/api/v1/stages/{stage.id}/notify/signature-request", json={})
    assert res.status_code == 503


def test_provider_error_is_502_with_payload(client, project):
    _make_config()
    stage = _make_approved_stage(project.id)
    provider_body = {"status": 400, "error": "Bad Request", "response": {"message": ["number not exists"]}}
    session = _wa_session(send_status=400, send_body=provider_body)
    with patch.object(wa_module, "whatsapp_gateway", WhatsAppGateway(session=session)):
        res = client.post(f"/api/v1/stages/{stage.id}/notify/signature-request", json={"phone": "11 97777-6666"})

    assert res.status_code == 502
    body = res.get_json()
    assert body["code"] == "ERR_GATEWAY"
    assert body["details"] == provider_body
    # Exactly one send attempt: no retries
    sends = [c for c in session.request.call_args_list if "sendText" in c.args[1]]
    assert len(sends) == 1


def test_signature_request_on_pending_stage_is_409(client, project):
    _make_config()
    stage = stage_service.create_stage(project.id, {"title": "Alvenaria"})
    session = _wa_session()
    with patch.object(wa_module, "whatsapp_gateway", WhatsAppGateway(session=session)):
        res = client.post(f"/api/v1/stages/{stage.id}/notify/signature-request", json={})
    assert res.status_code == 409
    session.request.assert_not_called()


def test_missing_phone_is_422(client):
    _make_config()
    p = Project(name="Sem Fone", client_name="Lia", client_email="lia@example.com")
    db.session.add(p)
    db.session.commit()
    stage = _make_approved_stage(p.id)
    res = client.post(f"/api/v1/stages/{stage.id}/notify/signature-request", json={})
    assert res.status_code == 422


# ═══════════════════════════════════════════════════════════════
# Stage summary and generic send
# ═══════════════════════════════════════════════════════════════


def test_stage_summary_text(project):
    stage = _make_approved_stage(project.id, "Pintura", description="Duas demãos")
    stage.updated_at = datetime(2026, 5, 4, 14, 30, tzinfo=timezone.utc)
    db.session.commit()
    text = notification_service.compose_stage_summary(stage)
    assert "✅ *Etapa 1: Pintura*" in text
    assert "Status: Aprovada e Concluída" in text
    assert "Data de conclusão: 04/05/2026 14:30" in text
    assert "\n\nDescrição: Duas demãos" in text
    assert text.endswith("Agradecemos sua confiança!\nEquipe Tavitrum")


def test_stage_summary_without_description(project):
    stage = _make_approved_stage(project.id, "Pintura")
    assert "Descrição" not in notification_service.compose_stage_summary(stage)


def test_stage_summary_requires_approved(client, project):
    stage = stage_service.create_stage(project.id, {"title": "Pintura"})
    res = client.post(f"/api/v1/stages/{stage.id}/notify/summary", json={})
    assert res.status_code == 409


def test_generic_whatsapp_send(client):
    _make_config()
    session = _wa_session()
    with patch.object(wa_module, "whatsapp_gateway", WhatsAppGateway(session=session)):
        res = client.post("/api/v1/notifications/whatsapp", json={"phone": "11988887777", "message": "Oi"})
    assert res.status_code == 200
    assert session.request.call_args.kwargs["json"]["text"] == "Oi"


# ═══════════════════════════════════════════════════════════════
# Email
# ═══════════════════════════════════════════════════════════════


def test_report_email_dev_mode_and_stamping(client, project):
    project.status = "completed"
    db.session.commit()
    res = client.post(f"/api/v1/projects/{project.id}/report/email")
    assert res.status_code == 200
    assert res.get_json()["completed_at_stamped"] is True

    db.session.expire_all()
    stamped = db.session.get(Project, project.id).completed_at
    assert stamped is not None

    # Second send keeps the first stamp
    client.post(f"/api/v1/projects/{project.id}/report/email")
    db.session.expire_all()
    assert db.session.get(Project, project.id).completed_at == stamped


def test_report_email_not_stamped_when_not_completed(client, project):
    client.post(f"/api/v1/projects/{project.id}/report/email")
    db.session.expire_all()
    assert db.session.get(Project, project.id).completed_at is None


def test_report_email_html_content(app, project, collaborator):
    s1 = _make_approved_stage(project.id, "Fundação")
    stage_service.set_responsibles(s1.id, [collaborator.id])
    stage_service.create_stage(project.id, {"title": "<b>Telhado</b>"})

    app.config["RESEND_API_KEY"] = "re_test"
    session = MagicMock()
    session.request.return_value = _resp(200, {"id": "email-123"})
    try:
        with patch.object(email_module, "email_gateway", EmailGateway(session=session)):
            result = notification_service.send_project_report(project.id)
    finally:
        app.config["RESEND_API_KEY"] = None

    assert result["id"] == "email-123"
    method, url = session.request.call_args.args
    assert url == "https://api.resend.com/emails"
    kwargs = session.request.call_args.kwargs
    assert kwargs["headers"]["Authorization"] == "Bearer re_test"
    sent = kwargs["json"]
    assert sent["to"] == ["joao@example.com"]
    assert sent["subject"] == "Relatório da Obra: Casa Jardim"
    html = sent["html"]
    assert "1 de 2 etapas concluídas" in html
    assert "Progresso: 50%" in html
    assert "Carlos Lima" in html
    assert "Não atribuído" in html
    assert "#22c55e" in html
    assert "&lt;b&gt;Telhado&lt;/b&gt;" in html


def test_report_email_without_stages(project):
    _, html = notification_service.render_project_report_html(project)
    assert "Nenhuma etapa cadastrada." in html


def test_email_provider_error_is_502(client, app, project):
    app.config["RESEND_API_KEY"] = "re_test"
    session = MagicMock()
    session.request.return_value = _resp(422, {"name": "validation_error", "message": "Invalid `to` field"})
    try:
        with patch.object(email_module, "email_gateway", EmailGateway(session=session)):
            res = client.post(f"/api/v1/projects/{project.id}/report/email")
    finally:
        app.config["RESEND_API_KEY"] = None
    assert res.status_code == 502
    assert res.get_json()["details"]["name"] == "validation_error"


def test_project_signature_request_email(client):
    p = Project(
        name="Reforma Loja", client_name="Rita Alves", client_email="rita@example.com",
        status="completed", signature_unlocked=True,
    )
    db.session.add(p)
    db.session.commit()

    gw = MagicMock()
    gw.send.return_value = MagicMock(ok=True, data={"id": "dev"}, status_code=200, error=None)
    with patch.object(email_module, "email_gateway", gw):
        res = client.post(f"/api/v1/projects/{p.id}/signature/request")

    assert res.status_code == 200
    sign_link = res.get_json()["sign_link"]
    assert sign_link.startswith("https://obras.example.com/assinar/")
    kwargs = gw.send.call_args.kwargs
    assert kwargs["subject"] == "Confirmação de Recebimento - Reforma Loja"
    assert sign_link in kwargs["html"]
    assert "Confirmar Recebimento" in kwargs["html"]


def test_project_signature_request_without_email_keeps_old_link(client):
    p = Project(
        name="Reforma Loja", client_name="Rita Alves", client_email="   ",
        status="completed", signature_unlocked=True, signature_token="link-anterior",
    )
    db.session.add(p)
    db.session.commit()

    gw = MagicMock()
    with patch.object(email_module, "email_gateway", gw):
        res = client.post(f"/api/v1/projects/{p.id}/signature/request")

    assert res.status_code == 422
    assert res.get_json()["details"] == {"client_email": "required"}
    gw.send.assert_not_called()
    db.session.expire_all()
    assert db.session.get(Project, p.id).signature_token == "link-anterior"
