"""Top-level application package for the expense management API.

This package contains everything required to run the FastAPI backend
for a small-business expense desk: database models, Pydantic schemas,
service layers for receipt analysis, rate limiting, the approval
workflow, audit logging, storage and dashboards, as well as the API
routers and a small async client.

To run the API locally you can execute:

```bash
uvicorn expense_desk.api.main:app --reload
```

This will serve the FastAPI application on http://localhost:8000 and
automatically reload on code changes. Configuration is read from
environment variables or a ``.env`` file at the project root; set
``DB_DEV_FALLBACK_SQLITE=true`` to use a local SQLite database stored in
``expense_desk.db`` when no ``DATABASE_URL`` is provided.
"""

__all__: list[str] = []
