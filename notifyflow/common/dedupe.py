"""Stable dedupe keys for notification intents."""

import hashlib


DEDUPE_KEY_LENGTH = 48


def dedupe_key(tenant_id: str, rule_id: str, entity_id: str, channel: str, source: str) -> str:
    """Hash one (tenant, rule, entity, channel, source) intent to a fixed-length key."""

    raw = "|".join([tenant_id, rule_id, entity_id, channel, source]).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:DEDUPE_KEY_LENGTH]
