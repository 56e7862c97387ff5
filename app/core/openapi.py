"""OpenAPI metadata and customization utilities.

Enriches the generated OpenAPI schema with:
- Tags metadata
- The operator key security scheme (``X-Admin-Key``) on admin operations
- The 429 rejection contract on every operation guarded by admission
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_RATE_LIMIT_RESPONSE = {
    "description": "Request not admitted: quota exceeded or origin blocked.",
    "headers": {
        "Retry-After": {
            "description": "Seconds to wait before retrying.",
            "schema": {"type": "integer"},
        },
    },
    "content": {
        "application/json": {
            "schema": {"$ref": "#/components/schemas/RateLimitRejection"},
        },
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "AdminKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-Admin-Key",
                "description": "Operator key for the admission introspection endpoints.",
            },
        )
        schemas = components.setdefault("schemas", {})
        schemas.setdefault(
            "RateLimitRejection",
            {
                "type": "object",
                "required": ["message", "retryAfter"],
                "properties": {
                    "message": {"type": "string"},
                    "retryAfter": {"type": "integer", "minimum": 0},
                    "violations": {"type": "integer", "minimum": 0},
                },
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Admin",
                "description": "Operator introspection of the admission gate.",
            },
            {
                "name": "Health",
                "description": "Liveness checks (not subject to admission).",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if path.endswith("/health"):
                    method_obj["security"] = []
                    continue
                method_obj.setdefault("responses", {}).setdefault("429", _RATE_LIMIT_RESPONSE)
                if "/admin/" in path:
                    method_obj["security"] = [{"AdminKeyAuth": []}]

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
