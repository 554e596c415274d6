"""
personas/service.py -- Persona management with webhook URLs encrypted at rest.

Every write encrypts the webhook URL with auth/crypto (AES-256-GCM, fresh IV
per call) before it reaches PersonaStore. get_webhook_url() and send_message()
decrypt on every call; plaintext is never cached on the service or written
to the log.

send_message() relays a chat message through personas/webhook.py, behind
a per-persona circuit breaker.

A decryption failure means the stored blob is corrupt or ENCRYPTION_KEY has
changed. Either way it is a server fault, so it surfaces as Internal (500)
with an opaque message.

All lookups are scoped to the caller's workspace: a persona id from another
workspace behaves exactly like an unknown id (404). A deactivated persona
is treated the same way.
"""

import logging
import re
import uuid
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy.exc import IntegrityError

from auth.crypto import CryptoError, decrypt, encrypt
from core.errors import BadGateway, BadRequest, Conflict, Internal, NotFound, ServiceUnavailable
from personas.models import MessageReply, Persona
from personas.store import PersonaStore
from personas.webhook import BreakerRegistry, WebhookClient, WebhookError, extract_reply

logger = logging.getLogger("personahub.personas")

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")

INVALID_URL = "Webhook URL must be a valid http or https URL"
NAME_REQUIRED = "Persona name is required"
NOT_FOUND = "Persona not found"
SLUG_TAKEN = "A persona with this name already exists in the workspace"
DECRYPT_FAILED = "Failed to read persona webhook"
MESSAGE_REQUIRED = "Message is required"
MESSAGE_TOO_LONG = "Message must be between 1 and 10000 characters"
PERSONA_UNAVAILABLE = "Persona is temporarily unavailable"
NO_RESPONSE = "Failed to get response from persona"

MAX_MESSAGE_LENGTH = 10000


def slugify(name: str) -> str:
    """Lower-case, collapse non-alphanumerics to '-' and trim dashes."""
    return _SLUG_STRIP_RE.sub("-", name.lower()).strip("-")


def validate_webhook_url(url: Optional[str]) -> str:
    """Return the trimmed URL if it is http(s) with a host, else raise BadRequest."""
    if not isinstance(url, str) or not url.strip():
        raise BadRequest(INVALID_URL)
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise BadRequest(INVALID_URL)
    return url


class PersonaService:
    """Create, list and read personas for one deployment.

    Usage:
        service = PersonaService(PersonaStore(url), settings.encryption_key)
        persona = service.create_persona(ws_id, account_id, "Support Bot", "https://hooks.example.com/x")
        url = service.get_webhook_url(ws_id, persona.id)
        answer = service.send_message(ws_id, persona.id, account_id, "Hello")
    """

    def __init__(
        self,
        store: PersonaStore,
        encryption_key: str,
        webhooks: Optional[WebhookClient] = None,
        breakers: Optional[BreakerRegistry] = None,
    ) -> None:
        if not encryption_key:
            raise ValueError("PersonaService requires an encryption key")
        self._store = store
        self._key = encryption_key
        self._webhooks = webhooks or WebhookClient()
        self._breakers = breakers or BreakerRegistry()

    def create_persona(
        self,
        workspace_id: str,
        created_by: str,
        name: str,
        webhook_url: str,
        description: Optional[str] = None,
    ) -> Persona:
        name = (name or "").strip()
        if not name:
            raise BadRequest(NAME_REQUIRED)
        slug = slugify(name)
        if not slug:
            raise BadRequest(NAME_REQUIRED)

        persona = Persona(
            workspace_id=workspace_id,
            name=name,
            slug=slug,
            description=description,
            webhook_url_encrypted=encrypt(validate_webhook_url(webhook_url), self._key),
            created_by=created_by,
        )
        try:
            persona.id = self._store.create(persona)
        except IntegrityError as exc:
            raise Conflict(SLUG_TAKEN) from exc

        logger.info("Persona %s created in workspace %s", persona.id, workspace_id)
        return self.get_persona(workspace_id, persona.id)

    def get_persona(self, workspace_id: str, persona_id: str) -> Persona:
        persona = self._store.get(workspace_id, persona_id)
        if persona is None or not persona.is_active:
            raise NotFound(NOT_FOUND)
        return persona

    def list_personas(self, workspace_id: str) -> list[Persona]:
        return self._store.list_for_workspace(workspace_id)

    def get_webhook_url(self, workspace_id: str, persona_id: str) -> str:
        return self._decrypt_url(self.get_persona(workspace_id, persona_id))

    def send_message(
        self,
        workspace_id: str,
        persona_id: str,
        account_id: str,
        message: str,
        conversation_id: Optional[str] = None,
    ) -> MessageReply:
        """Relay one chat message to the persona's webhook and return its reply.

        Raises ServiceUnavailable (503) while the persona's breaker is open and
        BadGateway (502) once every delivery attempt has failed. A missing
        conversation_id starts a new conversation with a fresh id.
        """
        text = message.strip() if isinstance(message, str) else ""
        if not text:
            raise BadRequest(MESSAGE_REQUIRED)
        if len(text) > MAX_MESSAGE_LENGTH:
            raise BadRequest(MESSAGE_TOO_LONG)

        persona = self.get_persona(workspace_id, persona_id)
        breaker = self._breakers.get(persona.id)
        if not breaker.allow_request():
            logger.warning("Persona %s refused: circuit breaker open", persona.id)
            raise ServiceUnavailable(PERSONA_UNAVAILABLE)

        url = self._decrypt_url(persona)
        conversation_id = conversation_id or uuid.uuid4().hex
        payload = {
            "message": text,
            "conversationId": conversation_id,
            "personaId": persona.id,
            "userId": account_id,
            "workspaceId": workspace_id,
        }
        try:
            body = self._webhooks.post(url, payload)
        except WebhookError as exc:
            breaker.record_failure()
            logger.error("Persona %s webhook delivery failed", persona.id)
            raise BadGateway(NO_RESPONSE) from exc

        breaker.record_success()
        return MessageReply(persona_id=persona.id, conversation_id=conversation_id, reply=extract_reply(body))

    def close(self) -> None:
        self._webhooks.close()

    def _decrypt_url(self, persona: Persona) -> str:
        try:
            return decrypt(persona.webhook_url_encrypted, self._key)
        except CryptoError as exc:
            logger.error("Webhook decryption failed for persona %s: %s", persona.id, type(exc).__name__)
            raise Internal(DECRYPT_FAILED) from exc

    def rotate_webhook_url(self, workspace_id: str, persona_id: str, webhook_url: str) -> Persona:
        self.get_persona(workspace_id, persona_id)
        blob = encrypt(validate_webhook_url(webhook_url), self._key)
        if not self._store.update(workspace_id, persona_id, webhook_url_encrypted=blob):
            raise NotFound(NOT_FOUND)
        logger.info("Webhook URL rotated for persona %s", persona_id)
        return self.get_persona(workspace_id, persona_id)

    def deactivate_persona(self, workspace_id: str, persona_id: str) -> None:
        self.get_persona(workspace_id, persona_id)
        self._store.update(workspace_id, persona_id, is_active=False)
        self._breakers.remove(persona_id)
        logger.info("Persona %s deactivated", persona_id)
