"""
schemas.py - JSON Schemas for the documents tufkeys reads

Credential archive entries and the documents returned by the transaction
service are checked against these before any key is generated, so a
malformed input fails the rotation instead of producing a root that cannot
be verified.
"""

from __future__ import annotations
from typing import Any, Dict

from jsonschema import Draft202012Validator

KEY_RECORD_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["keytype", "keyval"],
    "properties": {
        "keytype": {"type": "string", "minLength": 1},
        "keyval": {
            "type": "object",
            "properties": {
                "public": {"type": "string"},
                "private": {"type": "string"},
            },
            "anyOf": [{"required": ["public"]}, {"required": ["private"]}],
        },
    },
}

SIGNATURE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["keyid", "method", "sig"],
    "properties": {
        "keyid": {"type": "string", "minLength": 1},
        "method": {"type": "string", "minLength": 1},
        "sig": {"type": "string"},
    },
}

ROLE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["keyids", "threshold"],
    "properties": {
        "keyids": {"type": "array", "items": {"type": "string"}, "uniqueItems": True},
        "threshold": {"type": "integer", "minimum": 1},
    },
}

ROOT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["signed"],
    "properties": {
        "signed": {
            "type": "object",
            "required": ["expires", "keys", "roles", "version"],
            "properties": {
                "expires": {"type": "string"},
                "version": {"type": "integer", "minimum": 0},
                "keys": {
                    "type": "object",
                    "additionalProperties": {
                        "type": "object",
                        "required": ["keytype", "keyval"],
                        "properties": {
                            "keytype": {"type": "string"},
                            "keyval": {
                                "type": "object",
                                "required": ["public"],
                                "properties": {"public": {"type": "string"}},
                            },
                        },
                    },
                },
                "roles": {
                    "type": "object",
                    "required": ["root"],
                    "additionalProperties": ROLE_SCHEMA,
                },
            },
        },
        "signatures": {"type": ["array", "null"], "items": SIGNATURE_SCHEMA},
    },
}

TARGETS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["signed"],
    "properties": {
        "signed": {"type": "object"},
        "signatures": {"type": ["array", "null"], "items": SIGNATURE_SCHEMA},
    },
}


def validate(instance: Any, schema: Dict[str, Any]) -> None:
    """Validate ``instance`` against ``schema``.

    Raises:
        jsonschema.ValidationError: On the first (best-matching) violation.
    """
    Draft202012Validator(schema).validate(instance)
