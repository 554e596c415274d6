"""
personas/models.py -- Domain dataclass for AI personas.

Pure data container with zero logic. Encryption, slug generation and URL
validation all live in personas/service.py.

The webhook URL only ever exists here in encrypted form. Nothing in this
module holds plaintext.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Persona:
    """An AI persona that answers through a workspace-owned webhook.

    webhook_url_encrypted is the base64 IV || ciphertext || tag blob produced
    by auth/crypto.encrypt(). slug is unique per workspace.

    id is None before the record is written to the database.
    """

    workspace_id: str
    name: str
    slug: str
    webhook_url_encrypted: str
    created_by: str
    description: Optional[str] = None
    is_active: bool = True
    id: Optional[str] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class MessageReply:
    """What a persona's webhook answered to one chat message."""

    persona_id: str
    conversation_id: str
    reply: str
