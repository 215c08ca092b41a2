import secrets
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from subagent_delegate.agent.delegation import DEFAULT_ROLE, Delegator


class DelegateRequest(BaseModel):
    task: str
    agent_role: str = DEFAULT_ROLE
    context: str = ""
    allow_tools: bool = False
    working_directory: str = ""
    auto_debug: Optional[bool] = None


def create_app(delegator: Delegator, workspace_root: "Path | None" = None) -> FastAPI:
    """Local HTTP surface over one ``Delegator``.

    When ``SUBAGENT_LOCAL_API_KEY`` is configured, ``/api/v1/*`` requires it in
    the ``x-local-api-key`` header (or as a bearer token).
    """
    app = FastAPI(title="Subagent Delegate", version="0.1.0")
    expected_key = delegator.config.local_api_key
    default_root = (workspace_root or Path.cwd()).expanduser().resolve()

    def _resolve_api_token(request: Request) -> str:
        bearer = (request.headers.get("authorization") or "").strip()
        if bearer.lower().startswith("bearer "):
            return bearer[7:].strip()
        return (request.headers.get("x-local-api-key") or "").strip()

    def _require_local_api_key(request: Request) -> None:
        if not expected_key:
            return
        token = _resolve_api_token(request)
        if not token:
            raise HTTPException(status_code=401, detail="Missing local API token.")
        if not secrets.compare_digest(token, expected_key):
            raise HTTPException(status_code=401, detail="Invalid local API token.")

    def _resolve_workdir(raw: str) -> Path:
        if not raw.strip():
            return default_root
        candidate = Path(raw).expanduser()
        target = (candidate if candidate.is_absolute() else default_root / candidate).resolve()
        if target != default_root and default_root not in target.parents:
            raise HTTPException(status_code=400, detail="working_directory escapes the workspace root.")
        if not target.is_dir():
            raise HTTPException(status_code=400, detail="working_directory does not exist.")
        return target

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", **(await delegator.health())}

    @app.post("/api/v1/delegate")
    async def delegate(body: DelegateRequest, request: Request) -> Dict[str, Any]:
        _require_local_api_key(request)
        task = body.task.strip()
        if not task:
            raise HTTPException(status_code=400, detail="Task is required")
        result = await delegator.delegate(
            task=task,
            agent_role=body.agent_role or DEFAULT_ROLE,
            context=body.context,
            allow_tools=body.allow_tools,
            working_directory=_resolve_workdir(body.working_directory),
            auto_debug=body.auto_debug,
        )
        return result.to_dict()

    @app.on_event("shutdown")
    async def _close_delegator() -> None:
        await delegator.aclose()

    return app
