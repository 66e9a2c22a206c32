"""API client for the Poiesis admin endpoints."""

from __future__ import annotations

from typing import Any

import httpx


class PoiesisClient:
    """HTTP client wrapping the admin API; acts as the given admin user."""

    def __init__(self, base_url: str = "http://localhost:8400", user_id: str = "admin") -> None:
        self.base_url = base_url.rstrip("/")
        headers = {"X-User-ID": user_id, "X-User-Type": "admin"}
        self._client = httpx.Client(base_url=f"{self.base_url}/api/v1", headers=headers, timeout=30)

    def _handle(self, resp: httpx.Response) -> Any:
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise RuntimeError(f"API error ({resp.status_code}): {detail}")
        if resp.status_code == 204:
            return None
        return resp.json()

    # --- Prompts ---

    def list_prompts(self) -> list[dict]:
        return self._handle(self._client.get("/admin/prompts"))

    def get_active_prompt(self) -> dict:
        return self._handle(self._client.get("/admin/prompts/active"))

    def create_prompt(self, text: str, active: bool = False) -> dict:
        return self._handle(self._client.post("/admin/prompts", json={"text": text, "active": active}))

    def update_prompt(self, prompt_id: str, data: dict) -> dict:
        return self._handle(self._client.put(f"/admin/prompts/{prompt_id}", json=data))

    def delete_prompt(self, prompt_id: str) -> None:
        self._handle(self._client.delete(f"/admin/prompts/{prompt_id}"))

    # --- Tokens ---

    def token_usage(self) -> dict:
        return self._handle(self._client.get("/admin/tokens"))
