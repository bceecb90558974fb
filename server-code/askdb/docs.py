# askdb/docs.py
from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi
from typing import Any, Dict, List, Optional

from askdb.core.errors import ErrorKind
from askdb.settings import Settings

TAGS_METADATA: List[Dict[str, Any]] = [
    {
        "name": "health",
        "description": "Liveness, database pool and schema cache status.",
    },
    {
        "name": "query",
        "description": (
            "Ask a natural language question. The answer is a validated, read-only SQL query, "
            "its rows, chart tuples and a labelled result briefing."
        ),
    },
    {
        "name": "schema",
        "description": "The cached database schema snapshot, and forced refreshes of it.",
    },
]


def create_app(settings: Settings, lifespan: Optional[Any] = None) -> FastAPI:
    """
    Central place for Swagger/OpenAPI metadata and docs URLs.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description=(
            "Schema-aware natural-language-to-SQL over **PostgreSQL (read-only)**. "
            "Questions are turned into SQL by a text-generation service, checked by a safety "
            "validator and run in read-only transactions; known question shapes also have "
            "deterministic fallback queries.\n\n"
            "Use `/query` (POST) to ask a question."
        ),
        openapi_url="/openapi.json",
        docs_url="/docs",     # Swagger UI
        redoc_url="/redoc",   # ReDoc
        lifespan=lifespan,
    )

    app.openapi_tags = TAGS_METADATA

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema

        schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
            tags=TAGS_METADATA,
        )
        schema["servers"] = [
            {"url": "http://127.0.0.1:8001", "description": "Local dev"},
        ]
        schema.setdefault("components", {}).setdefault("schemas", {})["QueryError"] = {
            "type": "object",
            "required": ["kind", "message"],
            "properties": {
                "kind": {"type": "string", "enum": [k.value for k in ErrorKind]},
                "message": {"type": "string"},
                "hint": {"type": "string"},
                "sql": {"type": "string"},
                "detail": {"type": "string"},
            },
        }
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi
    return app
