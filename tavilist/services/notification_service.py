"""
Notification dispatch — WhatsApp (Evolution API) and email (Resend).

Every WhatsApp send runs the same path:
    1. load the singleton WhatsAppConfig (missing → ChannelUnavailableError)
    2. probe connectionState and persist ``connected`` + ``last_checked_at``
    3. not connected → ChannelUnavailableError (nothing is sent)
    4. sendText once; provider failure → GatewayError with the payload

Delivery is at-most-once: no retries, no outbox. Client-facing texts are
in Portuguese; the channel API key is decrypted only for the call.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

from flask import current_app
from markupsafe import escape

from tavilist.core.exceptions import (
    ChannelUnavailableError,
    GatewayError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from tavilist.integrations import email_gateway as email_module
from tavilist.integrations import whatsapp_gateway as wa_module
from tavilist.integrations.whatsapp_gateway import CONNECTED_STATES
from tavilist.models import db
from tavilist.models.project import PROJECT_STATUS_LABELS, Project
from tavilist.models.stage import STAGE_STATUS_COLORS, STAGE_STATUS_LABELS
from tavilist.models.whatsapp import WhatsAppConfig
from tavilist.services import project_service, signature_service, stage_service
from tavilist.utils.crypto import decrypt_secret, encrypt_secret

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Message templates
# ═══════════════════════════════════════════════════════════════════════════

_WHATSAPP_TEMPLATES: dict[str, str] = {
    "signature_request": (
        "Olá {client_name}! 👋\n"
        "\n"
        "A etapa *\"{stage_title}\"* (etapa {ordinal}) da obra *\"{project_name}\"* "
        "foi aprovada e concluída.\n"
        "\n"
        "📸 Visualize o relatório com fotos:\n"
        "{view_link}\n"
        "\n"
        "✍️ Confirme o recebimento com sua assinatura:\n"
        "{sign_link}\n"
        "\n"
        "Atenciosamente,\n"
        "Equipe HubTav"
    ),
    "stage_summary": (
        "Olá {client_name}! 👋\n"
        "\n"
        "Temos uma atualização sobre sua obra *\"{project_name}\"*:\n"
        "\n"
        "✅ *Etapa {ordinal}: {stage_title}*\n"
        "Status: Aprovada e Concluída\n"
        "Data de conclusão: {completed_at}"
        "{description_block}"
        "\n\nAgradecemos sua confiança!\n"
        "Equipe Tavitrum"
    ),
}

_EMAIL_TEMPLATES: dict[str, dict[str, str]] = {
    "project_report": {
        "subject": "Relatório da Obra: {project_name}",
        "html": """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>Relatório da Obra: {project_name}</title>
  </head>
  <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px; background-color: #f9fafb;">
    <div style="background-color: white; border-radius: 8px; padding: 32px; box-shadow: 0 1px 3px rgba(0,0,0,0.1);">
      <h1 style="color: #111827; margin-bottom: 8px;">Relatório da Obra</h1>
      <h2 style="color: #6b7280; font-weight: normal; margin-top: 0;">{project_name}</h2>

      <div style="background-color: #f3f4f6; border-radius: 8px; padding: 16px; margin: 24px 0;">
        <p style="margin: 8px 0;"><strong>Cliente:</strong> {client_name}</p>
        <p style="margin: 8px 0;"><strong>Status:</strong> {status_label}</p>
        <p style="margin: 8px 0;"><strong>Data de Início:</strong> {start_date}</p>
        <p style="margin: 8px 0;"><strong>Data Prevista:</strong> {expected_end_date}</p>
        {completed_line}
      </div>

      <div style="margin: 24px 0;">
        <h3 style="color: #111827;">Progresso: {percent}%</h3>
        <div style="background-color: #e5e7eb; border-radius: 4px; height: 20px; overflow: hidden;">
          <div style="background-color: #22c55e; height: 100%; width: {percent}%;"></div>
        </div>
        <p style="color: #6b7280; font-size: 14px;">{approved} de {total} etapas concluídas</p>
      </div>

      {stages_block}

      <div style="margin-top: 32px; padding-top: 16px; border-top: 1px solid #e5e7eb;">
        <p style="color: #6b7280; font-size: 12px;">
          Este relatório foi gerado automaticamente pelo TaviList em {generated_date} às {generated_time}.
        </p>
      </div>
    </div>
  </body>
</html>
""",
    },
    "project_signature_request": {
        "subject": "Confirmação de Recebimento - {project_name}",
        "html": """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
  </head>
  <body style="font-family: 'Inter', -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; margin: 0; padding: 0; background-color: #f4f4f5;">
    <div style="max-width: 600px; margin: 0 auto; padding: 40px 20px;">
      <div style="background-color: white; border-radius: 8px; padding: 40px; box-shadow: 0 1px 3px rgba(0, 0, 0, 0.1);">
        <h1 style="color: #18181b; font-size: 24px; font-weight: 600; margin: 0 0 24px 0;">
          Confirmação de Recebimento
        </h1>
        <p style="color: #3f3f46; font-size: 16px; line-height: 1.6; margin: 0 0 16px 0;">
          Olá <strong>{client_name}</strong>,
        </p>
        <p style="color: #3f3f46; font-size: 16px; line-height: 1.6; margin: 0 0 24px 0;">
          A obra <strong>"{project_name}"</strong> foi concluída e estamos aguardando sua confirmação de recebimento.
        </p>
        <p style="color: #3f3f46; font-size: 16px; line-height: 1.6; margin: 0 0 32px 0;">
          Para atestar o recebimento da obra, clique no botão abaixo:
        </p>
        <div style="text-align: center; margin: 32px 0;">
          <a href="{sign_link}" style="display: inline-block; background-color: #18181b; color: white; text-decoration: none; padding: 14px 32px; border-radius: 6px; font-weight: 500; font-size: 16px;">
            Confirmar Recebimento
          </a>
        </div>
        <p style="color: #71717a; font-size: 14px; line-height: 1.6; margin: 32px 0 0 0;">
          Se o botão não funcionar, copie e cole o link abaixo no seu navegador:
        </p>
        <p style="color: #71717a; font-size: 14px; word-break: break-all; margin: 8px 0 0 0;">
          {sign_link}
        </p>
      </div>
      <p style="color: #a1a1aa; font-size: 12px; text-align: center; margin: 24px 0 0 0;">
        Este é um email automático enviado pelo sistema TaviList.
      </p>
    </div>
  </body>
</html>
""",
    },
}

_STAGE_ROW = """
        <tr>
          <td style="padding: 12px; border-bottom: 1px solid #e5e7eb;">{ordinal}. {title}</td>
          <td style="padding: 12px; border-bottom: 1px solid #e5e7eb;">
            <span style="background-color: {color}; color: white; padding: 4px 8px; border-radius: 4px; font-size: 12px;">{label}</span>
          </td>
          <td style="padding: 12px; border-bottom: 1px solid #e5e7eb;">{responsible}</td>
        </tr>"""

_STAGE_TABLE = """<h3 style="color: #111827;">Etapas</h3>
      <table style="width: 100%; border-collapse: collapse; margin-top: 16px;">
        <thead>
          <tr style="background-color: #f3f4f6;">
            <th style="padding: 12px; text-align: left; border-bottom: 2px solid #e5e7eb;">Etapa</th>
            <th style="padding: 12px; text-align: left; border-bottom: 2px solid #e5e7eb;">Status</th>
            <th style="padding: 12px; text-align: left; border-bottom: 2px solid #e5e7eb;">Responsável</th>
          </tr>
        </thead>
        <tbody>{rows}
        </tbody>
      </table>"""

_NO_STAGES = "<p style='color: #6b7280;'>Nenhuma etapa cadastrada.</p>"


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"


def _render(template: str, context: dict[str, Any]) -> str:
    return template.format_map(_SafeDict(context))


def _fmt_date(value) -> str:
    return value.strftime("%d/%m/%Y") if value else "-"


def _fmt_datetime(value) -> str:
    return value.strftime("%d/%m/%Y %H:%M") if value else "-"


# ═══════════════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════════════


def normalize_phone(phone: str | None) -> str:
    """Digits only, Brazilian country code (55) prefixed when missing."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) < 10:
        raise ValidationError("A valid phone number is required", details={"phone": "invalid"})
    if not digits.startswith("55"):
        digits = "55" + digits
    return digits


def build_links(token: str) -> tuple[str, str]:
    """(view link, sign link) for a stage token."""
    base = current_app.config["SITE_URL"].rstrip("/")
    return f"{base}/etapa/{token}", f"{base}/assinar/{token}"


def compose_signature_request(stage, token: str) -> str:
    view_link, sign_link = build_links(token)
    project = stage.project
    return _render(_WHATSAPP_TEMPLATES["signature_request"], {
        "client_name": project.client_name,
        "stage_title": stage.title,
        "ordinal": stage.ordinal,
        "project_name": project.name,
        "view_link": view_link,
        "sign_link": sign_link,
    })


def compose_stage_summary(stage) -> str:
    project = stage.project
    description_block = f"\n\nDescrição: {stage.description}" if stage.description else ""
    return _render(_WHATSAPP_TEMPLATES["stage_summary"], {
        "client_name": project.client_name,
        "project_name": project.name,
        "ordinal": stage.ordinal,
        "stage_title": stage.title,
        "completed_at": _fmt_datetime(stage.updated_at),
        "description_block": description_block,
    })


# ═══════════════════════════════════════════════════════════════════════════
#  WhatsApp channel
# ═══════════════════════════════════════════════════════════════════════════


def _get_config() -> WhatsAppConfig | None:
    return db.session.execute(
        db.select(WhatsAppConfig).order_by(WhatsAppConfig.id).limit(1)
    ).scalar_one_or_none()


def get_whatsapp_config() -> dict | None:
    cfg = _get_config()
    return cfg.to_dict() if cfg else None


def save_whatsapp_config(data: dict) -> dict:
    """Create or update the singleton row. The API key is stored encrypted."""
    cfg = _get_config()
    api_url = (data.get("api_url") or (cfg.api_url if cfg else "")).strip()
    instance_name = (data.get("instance_name") or (cfg.instance_name if cfg else "")).strip()
    api_key = (data.get("api_key") or "").strip()

    errors = {}
    if not api_url:
        errors["api_url"] = "required"
    elif not api_url.startswith(("http://", "https://")):
        errors["api_url"] = "must be an http(s) URL"
    if not instance_name:
        errors["instance_name"] = "required"
    if not api_key and cfg is None:
        errors["api_key"] = "required"
    if errors:
        raise ValidationError("Invalid WhatsApp configuration", details=errors)

    if cfg is None:
        cfg = WhatsAppConfig(api_url=api_url, instance_name=instance_name,
                             api_key_encrypted=encrypt_secret(api_key))
        db.session.add(cfg)
    else:
        cfg.api_url = api_url
        cfg.instance_name = instance_name
        if api_key:
            cfg.api_key_encrypted = encrypt_secret(api_key)
    # Connection details changed; the next probe decides
    cfg.connected = False
    db.session.commit()
    logger.info("WhatsApp config saved instance=%s", instance_name)
    return cfg.to_dict()


def _probe(cfg: WhatsAppConfig) -> tuple[bool, str, str]:
    """Probe the instance and persist the outcome. Returns (connected, state, api_key)."""
    api_key = decrypt_secret(cfg.api_key_encrypted)
    result = wa_module.whatsapp_gateway.connection_state(
        cfg.api_url, cfg.instance_name, api_key,
        timeout=current_app.config.get("WHATSAPP_TIMEOUT", 15),
    )
    state = result.data.get("state", "unknown") if isinstance(result.data, dict) else "unknown"
    connected = result.ok and state in CONNECTED_STATES

    cfg.connected = connected
    cfg.last_checked_at = datetime.now(timezone.utc)
    db.session.commit()

    if connected:
        logger.info("WhatsApp probe ok instance=%s state=%s", cfg.instance_name, state)
    else:
        logger.warning(
            "WhatsApp probe failed instance=%s state=%s error=%s",
            cfg.instance_name, state, result.error,
        )
    return connected, state, api_key


def check_connection() -> dict:
    """Admin "test connection" button: probe and report, never raises on down."""
    cfg = _get_config()
    if cfg is None:
        raise NotFoundError(resource="WhatsAppConfig")
    connected, state, _ = _probe(cfg)
    return {"connected": connected, "state": state}


def _require_channel() -> tuple[WhatsAppConfig, str]:
    cfg = _get_config()
    if cfg is None:
        raise ChannelUnavailableError("WhatsApp is not configured. Set it up in Settings.")
    connected, state, api_key = _probe(cfg)
    if not connected:
        raise ChannelUnavailableError(
            f"WhatsApp is disconnected (state: {state}). Reconnect the instance in Settings."
        )
    return cfg, api_key


def _deliver(cfg: WhatsAppConfig, api_key: str, number: str, text: str) -> dict:
    result = wa_module.whatsapp_gateway.send_text(
        cfg.api_url, cfg.instance_name, api_key,
        number=number,
        text=text,
        delay_ms=current_app.config.get("WHATSAPP_SEND_DELAY_MS", 1500),
        timeout=current_app.config.get("WHATSAPP_TIMEOUT", 15),
    )
    if not result.ok:
        logger.error(
            "WhatsApp send failed instance=%s status=%s error=%s",
            cfg.instance_name, result.status_code, result.error,
        )
        raise GatewayError(
            "Failed to send WhatsApp message",
            details=result.data if result.data else result.error,
            status_code=result.status_code,
        )
    return result.data if isinstance(result.data, dict) else {}


def send_whatsapp_message(phone: str, message: str) -> dict:
    """Generic admin send of free text."""
    message = (message or "").strip()
    if not message:
        raise ValidationError("message is required", details={"message": "required"})
    number = normalize_phone(phone)
    cfg, api_key = _require_channel()
    provider = _deliver(cfg, api_key, number, message)
    return {"success": True, "provider": provider}


def send_signature_request(stage_id: int, phone: str | None = None) -> dict:
    """Issue/refresh the stage token and send both links to the client."""
    stage = signature_service.ensure_signature_requestable(stage_id)
    number = normalize_phone(phone or stage.project.client_phone)
    cfg, api_key = _require_channel()

    sig = signature_service.request_signature(stage_id)
    text = compose_signature_request(stage, sig.token)
    provider = _deliver(cfg, api_key, number, text)

    view_link, sign_link = build_links(sig.token)
    logger.info(
        "Signature request sent stage_id=%s", stage.id,
        extra={"stage_id": stage.id, "project_id": stage.project_id, "event_type": "signature_link_sent"},
    )
    return {
        "success": True,
        "token": sig.token,
        "view_link": view_link,
        "sign_link": sign_link,
        "provider": provider,
    }


def send_stage_summary(stage_id: int, phone: str | None = None) -> dict:
    stage = stage_service.get_stage(stage_id)
    if stage.status != "approved":
        raise InvalidTransitionError(
            "stage", stage.status, "summary_sent",
            message="Only approved stages can be summarised to the client",
        )
    number = normalize_phone(phone or stage.project.client_phone)
    cfg, api_key = _require_channel()
    provider = _deliver(cfg, api_key, number, compose_stage_summary(stage))
    logger.info(
        "Stage summary sent stage_id=%s", stage.id,
        extra={"stage_id": stage.id, "project_id": stage.project_id, "event_type": "stage_summary_sent"},
    )
    return {"success": True, "provider": provider}


# ═══════════════════════════════════════════════════════════════════════════
#  Email
# ═══════════════════════════════════════════════════════════════════════════


def render_project_report_html(project: Project) -> tuple[str, str]:
    """Return (subject, html) for the project report email."""
    progress = project_service.project_progress(project.id)

    rows = []
    for stage in project.stages:
        names = [p.full_name for p in stage_service.merged_responsibles(stage)]
        rows.append(_STAGE_ROW.format(
            ordinal=stage.ordinal,
            title=escape(stage.title),
            color=STAGE_STATUS_COLORS.get(stage.status, "#9ca3af"),
            label=STAGE_STATUS_LABELS.get(stage.status, stage.status),
            responsible=escape(", ".join(names)) if names else "Não atribuído",
        ))
    stages_block = _STAGE_TABLE.format(rows="".join(rows)) if rows else _NO_STAGES

    completed_line = ""
    if project.completed_at:
        completed_line = (
            '<p style="margin: 8px 0;"><strong>Data de Conclusão:</strong> '
            f"{_fmt_date(project.completed_at)}</p>"
        )

    now = datetime.now(timezone.utc)
    template = _EMAIL_TEMPLATES["project_report"]
    context = {
        "project_name": escape(project.name),
        "client_name": escape(project.client_name),
        "status_label": PROJECT_STATUS_LABELS.get(project.status, project.status),
        "start_date": _fmt_date(project.start_date),
        "expected_end_date": _fmt_date(project.expected_end_date),
        "completed_line": completed_line,
        "percent": progress["percent"],
        "approved": progress["approved"],
        "total": progress["total"],
        "stages_block": stages_block,
        "generated_date": now.strftime("%d/%m/%Y"),
        "generated_time": now.strftime("%H:%M:%S"),
    }
    subject = _render(template["subject"], {"project_name": project.name})
    return subject, _render(template["html"], context)


def _send_email(to: str, subject: str, html: str) -> dict:
    result = email_module.email_gateway.send(to=to, subject=subject, html=html)
    if not result.ok:
        raise GatewayError(
            "Failed to send email",
            details=result.data if result.data else result.error,
            status_code=result.status_code,
        )
    return result.data if isinstance(result.data, dict) else {}


def send_project_report(project_id: int) -> dict:
    """Email the report to the client; stamp completed_at on first completed send."""
    project = project_service.get_project(project_id)
    if not project.client_email:
        raise ValidationError("Project has no client email", details={"client_email": "required"})

    subject, html = render_project_report_html(project)
    provider = _send_email(project.client_email, subject, html)

    stamped = False
    if project.status == "completed" and project.completed_at is None:
        project.completed_at = datetime.now(timezone.utc)
        db.session.commit()
        stamped = True

    logger.info(
        "Project report emailed project_id=%s stamped=%s", project.id, stamped,
        extra={"project_id": project.id, "event_type": "report_sent"},
    )
    return {"success": True, "id": provider.get("id"), "completed_at_stamped": stamped}


def send_project_signature_request(project_id: int) -> dict:
    """Issue a project token and email the confirmation link.

    The recipient is checked first: issuing a token revokes the previous link.
    """
    if not (project_service.get_project(project_id).client_email or "").strip():
        raise ValidationError("Project has no client email", details={"client_email": "required"})
    project, token = signature_service.request_project_signature(project_id)

    sign_link = f"{current_app.config['SITE_URL'].rstrip('/')}/assinar/{token}"
    template = _EMAIL_TEMPLATES["project_signature_request"]
    subject = _render(template["subject"], {"project_name": project.name})
    html = _render(template["html"], {
        "client_name": escape(project.client_name),
        "project_name": escape(project.name),
        "sign_link": sign_link,
    })
    provider = _send_email(project.client_email, subject, html)
    logger.info(
        "Project signature request emailed project_id=%s", project.id,
        extra={"project_id": project.id, "event_type": "project_signature_requested"},
    )
    return {"success": True, "sign_link": sign_link, "id": provider.get("id")}
