from __future__ import annotations

import json
from types import SimpleNamespace

import httpx
import pytest
from openai import APITimeoutError

from gtm_map.core.exceptions import ProviderError
from gtm_map.schemas.generation import GenerateResponse
from gtm_map.services.openai_service import ProspectGenerator, parse_prospects


ICP = {"solution": "Payroll automation", "industries": ["Logistics"]}


class _Responses:
    def __init__(self, output_text=None, error=None):
        self.output_text = output_text
        self.error = error
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(output_text=self.output_text)


def _client(**kwargs):
    return SimpleNamespace(responses=_Responses(**kwargs))


def test_parse_prospects_dedupes_clamps_and_sorts():
    reply = json.dumps(
        {
            "prospects": [
                {"name": "Acme", "domain": "ACME.com", "confidence": 70},
                {"name": "Acme Again", "domain": "acme.com", "confidence": 99},
                {"name": "Globex", "domain": "globex.io", "confidence": 140},
                {"name": "No Domain", "confidence": 80},
            ]
        }
    )

    prospects = parse_prospects(reply, limit=10)

    assert [p["domain"] for p in prospects] == ["globex.io", "acme.com"]
    assert prospects[0]["confidence"] == 100


def test_parse_prospects_accepts_fenced_reply_and_limits():
    reply = "```json\n" + json.dumps(
        [{"domain": f"d{i}.test", "confidence": i} for i in range(5)]
    ) + "\n```"

    prospects = parse_prospects(reply, limit=2)

    assert [p["domain"] for p in prospects] == ["d4.test", "d3.test"]


@pytest.mark.asyncio
async def test_generate_prospects_sends_icp_and_exclusions():
    client = _client(output_text=json.dumps({"prospects": [{"domain": "a.test"}]}))
    generator = ProspectGenerator(client, "gpt-test")

    prospects = await generator.generate_prospects(ICP, 5, exclude_domains=["old.test"])

    assert prospects[0]["domain"] == "a.test"
    request = client.responses.requests[0]
    assert request["model"] == "gpt-test"
    assert "old.test" in request["input"]
    assert "Payroll automation" in request["input"]


@pytest.mark.asyncio
async def test_provider_errors_are_wrapped():
    request = httpx.Request("POST", "https://api.openai.com/v1/responses")
    client = _client(error=APITimeoutError(request=request))
    generator = ProspectGenerator(client, "gpt-test")

    with pytest.raises(ProviderError):
        await generator.generate_prospects(ICP, 5)


@pytest.mark.asyncio
async def test_unparseable_reply_is_a_provider_error():
    generator = ProspectGenerator(_client(output_text="not json"), "gpt-test")

    with pytest.raises(ProviderError):
        await generator.generate_prospects(ICP, 5)


def test_parse_prospects_coerces_loose_field_types():
    reply = json.dumps(
        {
            "prospects": [
                {"name": None, "domain": "acme.com", "rationale": 5, "confidence": None},
                {"name": "Nameless", "domain": None, "confidence": 50},
            ]
        }
    )

    prospects = parse_prospects(reply, limit=10)

    assert prospects == [
        {"name": "acme.com", "domain": "acme.com", "rationale": "5", "confidence": 0}
    ]


@pytest.mark.asyncio
async def test_loose_reply_still_fits_the_response_model():
    reply = json.dumps(
        {"prospects": [{"name": "Acme", "domain": "acme.com", "rationale": 5, "confidence": 90}]}
    )
    generator = ProspectGenerator(_client(output_text=reply), "gpt-test")

    prospects = await generator.generate_prospects(ICP, 5)

    response = GenerateResponse.model_validate(
        {
            "prospects": prospects,
            "usage": {
                "used": 1,
                "quota": 50,
                "remaining": 49,
                "state": "ok",
                "plan_id": "starter",
                "status": "active",
            },
        }
    )
    assert response.prospects[0].rationale == "5"
