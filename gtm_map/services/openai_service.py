"""Prospect generation through the OpenAI Responses API."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError
from starlette.concurrency import run_in_threadpool

from gtm_map.core.config import Settings
from gtm_map.core.exceptions import ProviderError


logger = logging.getLogger(__name__)

PROSPECT_INSTRUCTIONS = (
    "You are a B2B prospecting analyst. Given an Ideal Customer Profile, list real "
    "companies that match it. Reply with JSON only, shaped as "
    '{"prospects": [{"name": str, "domain": str, "rationale": str, '
    '"confidence": int between 0 and 100}]}.'
)


def build_openai_client(config: Settings) -> OpenAI:
    """Create an OpenAI client configured with the project API key."""

    if not config.OPENAI_API_KEY:
        raise RuntimeError("OPENAI_API_KEY is not configured")
    return OpenAI(api_key=config.OPENAI_API_KEY, timeout=config.OPENAI_TIMEOUT_SECONDS)


def _prompt(icp: Dict[str, Any], batch_size: int, exclude_domains: List[str]) -> str:
    lines = [
        f"Find {batch_size} prospect companies for this ICP:",
        json.dumps(icp, sort_keys=True),
    ]
    if exclude_domains:
        lines.append("Do not include these domains: " + ", ".join(sorted(exclude_domains)))
    return "\n".join(lines)


def parse_prospects(output_text: str, limit: int) -> List[Dict[str, Any]]:
    """Pull the prospect list out of the model's JSON reply."""

    text = output_text.strip()
    if text.startswith("```"):
        text = text.strip("`")
        text = text.split("\n", 1)[1] if "\n" in text else ""
    data = json.loads(text)
    raw = data.get("prospects", []) if isinstance(data, dict) else data
    prospects: List[Dict[str, Any]] = []
    seen = set()
    for item in raw:
        domain = str(item.get("domain") or "").strip().lower()
        if not domain or domain in seen:
            continue
        seen.add(domain)
        rationale = item.get("rationale")
        prospects.append(
            {
                "name": str(item.get("name") or domain),
                "domain": domain,
                "rationale": str(rationale) if rationale is not None else None,
                "confidence": max(0, min(100, int(item.get("confidence") or 0))),
            }
        )
    prospects.sort(key=lambda p: p["confidence"], reverse=True)
    return prospects[:limit]


class ProspectGenerator:
    """The metered action behind ``POST /generate``."""

    def __init__(self, client: OpenAI, model: str) -> None:
        self.client = client
        self.model = model

    async def generate_prospects(
        self,
        icp: Dict[str, Any],
        batch_size: int,
        exclude_domains: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        try:
            response = await run_in_threadpool(
                self.client.responses.create,
                model=self.model,
                instructions=PROSPECT_INSTRUCTIONS,
                input=_prompt(icp, batch_size, exclude_domains or []),
            )
        except OpenAIError as exc:
            raise ProviderError("openai", str(exc)) from exc

        try:
            prospects = parse_prospects(response.output_text, batch_size)
        except (ValueError, TypeError, AttributeError) as exc:
            raise ProviderError("openai", f"Unparseable prospect reply: {exc}") from exc
        logger.info(f"Generated {len(prospects)} prospects with {self.model}")
        return prospects
