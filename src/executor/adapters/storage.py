"""
Storage Adapter — Datasets dans un dépôt GitHub.

Plugin : pluginGitHubStorage
  {action: save,   name, data, format?(json|csv|txt), description?}
  {action: load,   name, format?}
  {action: list}
  {action: delete, name, format?}
  {action: search, query}
  {action: stats}

Passe par l'API contents de GitHub (base64).
Sans token : résultats de démonstration (offline), aucun appel réseau.
"""

from __future__ import annotations

import base64
import io
import json
import logging
from typing import Any

import httpx
import pandas as pd

from executor.registry import Capability
from models.action import ActionKind, ImpactLevel
from models.errors import ActionValidationError, ExecutionError
from services.config import Settings, get_settings


logger = logging.getLogger("actiongate.executor.storage")

ACTION_NAME = "pluginGitHubStorage"
FORMATS = ("json", "csv", "txt", "md")
_NEEDS_NAME = {"save", "load", "delete"}
STORAGE_ACTIONS = {"save", "load", "list", "delete", "search", "stats"}


def is_safe_dataset_name(name: str) -> bool:
    """Un nom de dataset reste sous github_data_path."""
    if not name.strip() or name.startswith("."):
        return False
    return not any(part in name for part in ("/", "\\", ".."))


def validate_storage_params(params: dict[str, Any]) -> bool:
    action = params.get("action")
    if action not in STORAGE_ACTIONS:
        return False
    if action in _NEEDS_NAME and not (isinstance(params.get("name"), str) and params["name"].strip()):
        return False
    name = params.get("name")
    if name is not None and not (isinstance(name, str) and is_safe_dataset_name(name)):
        return False
    if action == "save" and "data" not in params:
        return False
    if action == "search" and not isinstance(params.get("query"), str):
        return False
    fmt = params.get("format")
    return fmt is None or fmt in FORMATS


def encode_dataset(data: Any, fmt: str) -> str:
    """Sérialise un dataset au format demandé."""
    if fmt == "json":
        return json.dumps(data, indent=2, ensure_ascii=False, default=str)
    if fmt == "csv":
        if not isinstance(data, list):
            raise ActionValidationError(ACTION_NAME, "CSV datasets must be a list of rows")
        if not data:
            return ""
        return pd.DataFrame(data).to_csv(index=False)
    return str(data)


def decode_dataset(content: str, fmt: str) -> Any:
    if fmt == "json":
        return json.loads(content)
    if fmt == "csv":
        if not content.strip():
            return []
        df = pd.read_csv(io.StringIO(content), dtype=str, keep_default_na=False)
        return df.to_dict(orient="records")
    return content


class GitHubStorageAdapter:
    """
    Adapter de stockage de datasets.

    Encapsule l'API REST GitHub (contents).
    Chaque méthode reçoit les paramètres du plugin et retourne un dict.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client: httpx.AsyncClient | None = client

        if self._client is None and self._settings.has_github:
            self._init_client()

    def _init_client(self) -> None:
        """Initialise le client GitHub."""
        self._client = httpx.AsyncClient(
            base_url="https://api.github.com",
            headers={
                "Authorization": f"token {self._settings.github_token}",
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": "actiongate",
            },
            timeout=self._settings.execution_timeout_seconds,
        )

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def _repo(self) -> str:
        return f"/repos/{self._settings.github_owner}/{self._settings.github_repository}"

    def _path(self, name: str, fmt: str) -> str:
        return f"{self._settings.github_data_path}/{name}.{fmt}"

    def _html_url(self, path: str) -> str:
        return (
            f"https://github.com/{self._settings.github_owner}/"
            f"{self._settings.github_repository}/blob/{self._settings.github_branch}/{path}"
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await self._client.request(method, url, **kwargs)
        if response.status_code >= 400:
            try:
                message = response.json().get("message", response.reason_phrase)
            except ValueError:
                message = response.reason_phrase
            raise ExecutionError(
                ACTION_NAME, f"GitHub API error: {response.status_code} - {message}"
            )
        return response.json() if response.content else {}

    async def _find(self, name: str, fmt: str | None) -> tuple[str, dict[str, Any]]:
        """Cherche le fichier du dataset parmi les formats possibles."""
        for candidate in ([fmt] if fmt else FORMATS):
            response = await self._client.get(
                f"{self._repo}/contents/{self._path(name, candidate)}",
                params={"ref": self._settings.github_branch},
            )
            if response.status_code == 200:
                return candidate, response.json()
        raise ExecutionError(ACTION_NAME, f"Dataset '{name}' not found")

    # ──────────────────────────────────────────────────────
    # DISPATCH
    # ──────────────────────────────────────────────────────

    async def execute(self, params: dict[str, Any]) -> dict[str, Any]:
        action = params["action"]
        if not self.is_connected:
            return self._offline_result(action, params)

        if action == "save":
            return await self.save(params["name"], params["data"], params.get("format", "json"), params.get("description"))
        if action == "load":
            return await self.load(params["name"], params.get("format"))
        if action == "list":
            return await self.list_datasets()
        if action == "delete":
            return await self.delete(params["name"], params.get("format"))
        if action == "search":
            return await self.search(params["query"])
        return await self.stats()

    # ──────────────────────────────────────────────────────
    # DATASETS
    # ──────────────────────────────────────────────────────

    async def save(
        self,
        name: str,
        data: Any,
        fmt: str = "json",
        description: str | None = None,
    ) -> dict[str, Any]:
        path = self._path(name, fmt)
        content = encode_dataset(data, fmt)
        body: dict[str, Any] = {
            "message": f"Add dataset: {name}" + (f" ({description})" if description else ""),
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": self._settings.github_branch,
        }

        # Mise à jour d'un fichier existant : GitHub exige son sha
        existing = await self._client.get(
            f"{self._repo}/contents/{path}",
            params={"ref": self._settings.github_branch},
        )
        if existing.status_code == 200:
            body["sha"] = existing.json().get("sha")

        response = await self._request("PUT", f"{self._repo}/contents/{path}", json=body)
        logger.info(f"Dataset '{name}' saved to {path}")
        return {
            "action": "save",
            "name": name,
            "path": path,
            "format": fmt,
            "size": len(content),
            "url": response.get("content", {}).get("html_url"),
            "sha": response.get("content", {}).get("sha"),
        }

    async def load(self, name: str, fmt: str | None = None) -> dict[str, Any]:
        found_fmt, file_info = await self._find(name, fmt)
        content = base64.b64decode(file_info.get("content", "")).decode("utf-8")
        return {
            "action": "load",
            "name": name,
            "format": found_fmt,
            "data": decode_dataset(content, found_fmt),
        }

    async def list_datasets(self) -> dict[str, Any]:
        listing = await self._request(
            "GET",
            f"{self._repo}/contents/{self._settings.github_data_path}",
            params={"ref": self._settings.github_branch},
        )
        datasets = [
            {
                "name": entry["name"].rsplit(".", 1)[0],
                "format": entry["name"].rsplit(".", 1)[-1],
                "size": entry.get("size", 0),
                "url": entry.get("html_url"),
                "raw_url": entry.get("download_url"),
            }
            for entry in (listing if isinstance(listing, list) else [])
            if entry.get("type") == "file"
        ]
        return {"action": "list", "datasets": datasets, "count": len(datasets)}

    async def delete(self, name: str, fmt: str | None = None) -> dict[str, Any]:
        found_fmt, file_info = await self._find(name, fmt)
        path = self._path(name, found_fmt)
        await self._request(
            "DELETE",
            f"{self._repo}/contents/{path}",
            json={
                "message": f"Delete dataset: {name}",
                "sha": file_info.get("sha"),
                "branch": self._settings.github_branch,
            },
        )
        logger.info(f"Dataset '{name}' deleted from {path}")
        return {"action": "delete", "name": name, "path": path}

    async def search(self, query: str) -> dict[str, Any]:
        listing = await self.list_datasets()
        needle = query.lower()
        matches = [d for d in listing["datasets"] if needle in d["name"].lower()]
        return {"action": "search", "query": query, "datasets": matches, "count": len(matches)}

    async def stats(self) -> dict[str, Any]:
        repo = await self._request("GET", self._repo)
        listing = await self.list_datasets()
        return {
            "action": "stats",
            "repository": repo.get("full_name"),
            "description": repo.get("description"),
            "stars": repo.get("stargazers_count", 0),
            "forks": repo.get("forks_count", 0),
            "size": repo.get("size", 0),
            "dataset_count": listing["count"],
            "updated_at": repo.get("updated_at"),
        }

    # ──────────────────────────────────────────────────────
    # HELPERS
    # ──────────────────────────────────────────────────────

    def _offline_result(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        """Résultat quand GitHub n'est pas configuré."""
        result: dict[str, Any] = {
            "action": action,
            "demo": True,
            "message": "GitHub storage not configured, running in demo mode",
        }
        if action == "save":
            fmt = params.get("format", "json")
            path = self._path(params["name"], fmt)
            result.update(
                name=params["name"],
                path=path,
                format=fmt,
                size=len(encode_dataset(params["data"], fmt)),
                url=self._html_url(path),
            )
        elif action in ("list", "search"):
            result.update(datasets=[], count=0)
        elif action in ("load", "delete"):
            result.update(name=params["name"])
        return result

    def capabilities(self) -> list[Capability]:
        return [
            Capability(
                name=ACTION_NAME,
                validate=validate_storage_params,
                execute=self.execute,
                description="Save, load, list, delete and search datasets in a GitHub repository",
                kind=ActionKind.PLUGIN,
                impact=ImpactLevel.LOW,
                category="storage",
                probe={"action": "list"},
            ),
        ]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
