import asyncio
import json
import logging
from typing import Any, Dict

import requests

from collaborators.base_collaborator import BaseCollaborator, ActionResult
from executor.template_renderer import TemplateRenderer, build_context
from models.actions import WebhookConfig

logger = logging.getLogger("automation_engine")


class WebhookCaller(BaseCollaborator):
    """Calls an outbound webhook; the body is a jinja2 template over the contact."""

    def __init__(self, timeout: float = 30, renderer: TemplateRenderer = None):
        self.timeout = timeout
        self.renderer = renderer or TemplateRenderer()

    async def execute(self, config: WebhookConfig, snapshot: Dict[str, Any]) -> ActionResult:
        context = build_context(snapshot)
        try:
            url = self.renderer.render(config.url, context)
            body = self.renderer.render(config.body, context) if config.body else None
        except ValueError as e:
            return ActionResult.failed(str(e), permanent=True)

        if body is None and config.method != "GET":
            body = json.dumps({"contact": snapshot}, default=str)

        return await asyncio.to_thread(self._call, config.method, url, dict(config.headers), body)

    def _call(self, method: str, url: str, headers: Dict[str, str], body) -> ActionResult:
        headers.setdefault("Content-Type", "application/json")
        try:
            resp = requests.request(method, url, headers=headers, data=body, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Webhook {method} {url} failed: {e}")
            return ActionResult.failed(f"Webhook request failed: {e}")

        if resp.status_code >= 400:
            permanent = resp.status_code < 500 and resp.status_code != 429
            logger.error(f"Webhook {method} {url} returned {resp.status_code}")
            return ActionResult.failed(f"Webhook returned {resp.status_code}", permanent=permanent, status_code=resp.status_code)

        return ActionResult.ok(status_code=resp.status_code, url=url)
