"""
api/routes/v1/personas.py -- Persona REST endpoints.

Routes:
  POST   /api/v1/personas                 -- create persona (manage_persona)
  GET    /api/v1/personas                 -- list workspace personas (view_persona)
  GET    /api/v1/personas/{id}/webhook    -- decrypted webhook URL (manage_persona)
  PUT    /api/v1/personas/{id}/webhook    -- rotate webhook URL (manage_persona)
  POST   /api/v1/personas/{id}/chat       -- relay a message to the webhook (view_persona)
  DELETE /api/v1/personas/{id}            -- deactivate persona (delete_persona)

Every route is scoped to principal.workspace_id; the service treats a persona
from another workspace as not found. List and create responses never include
the webhook URL.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import ChatRequest, ChatResponse, PersonaCreate, PersonaResponse, WebhookResponse, WebhookUpdate
from auth.access import DELETE_PERSONA, MANAGE_PERSONA, VIEW_PERSONA
from auth.dependencies import require_permission
from auth.models import Principal
from core.config import get_settings
from personas.service import PersonaService

router = APIRouter()
_settings = get_settings()


def _service(request: Request) -> PersonaService:
    return request.app.state.persona_service


@router.post("/personas", response_model=PersonaResponse, status_code=201)
def create_persona(
    request: Request,
    body: PersonaCreate,
    principal: Principal = Depends(require_permission(MANAGE_PERSONA)),
) -> PersonaResponse:
    persona = _service(request).create_persona(
        workspace_id=principal.workspace_id,
        created_by=principal.id,
        name=body.name,
        webhook_url=body.webhook_url,
        description=body.description,
    )
    return PersonaResponse.from_persona(persona)


@router.get("/personas", response_model=list[PersonaResponse])
def list_personas(
    request: Request,
    principal: Principal = Depends(require_permission(VIEW_PERSONA)),
) -> list[PersonaResponse]:
    return [PersonaResponse.from_persona(p) for p in _service(request).list_personas(principal.workspace_id)]


@router.get("/personas/{persona_id}/webhook", response_model=WebhookResponse)
def get_webhook(
    request: Request,
    response: Response,
    persona_id: str,
    principal: Principal = Depends(require_permission(MANAGE_PERSONA)),
) -> WebhookResponse:
    url = _service(request).get_webhook_url(principal.workspace_id, persona_id)
    response.headers["Cache-Control"] = "no-store"
    return WebhookResponse(persona_id=persona_id, webhook_url=url)


@router.put("/personas/{persona_id}/webhook", response_model=PersonaResponse)
def rotate_webhook(
    request: Request,
    persona_id: str,
    body: WebhookUpdate,
    principal: Principal = Depends(require_permission(MANAGE_PERSONA)),
) -> PersonaResponse:
    persona = _service(request).rotate_webhook_url(principal.workspace_id, persona_id, body.webhook_url)
    return PersonaResponse.from_persona(persona)


@router.post("/personas/{persona_id}/chat", response_model=ChatResponse)
@limiter.limit(_settings.chat_rate_limit)
def chat(
    request: Request,
    persona_id: str,
    body: ChatRequest,
    principal: Principal = Depends(require_permission(VIEW_PERSONA)),
) -> ChatResponse:
    reply = _service(request).send_message(
        principal.workspace_id,
        persona_id,
        principal.id,
        body.message,
        conversation_id=body.conversation_id,
    )
    return ChatResponse.from_reply(reply)


@router.delete("/personas/{persona_id}", status_code=204)
def delete_persona(
    request: Request,
    persona_id: str,
    principal: Principal = Depends(require_permission(DELETE_PERSONA)),
) -> Response:
    _service(request).deactivate_persona(principal.workspace_id, persona_id)
    return Response(status_code=204)
