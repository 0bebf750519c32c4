"""Client for the automated (tier 1) dispute resolver."""
import json
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from intentmatch.config import settings
from intentmatch.models import VoteChoice

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an impartial dispute mediator for an AI agent marketplace. "
    "Analyze the evidence and propose a fair resolution: 'uphold' (pay provider), "
    "'refund' (return to client) or 'split'. Respond with a JSON object "
    '{"resolution": ..., "confidence": 0-100, "analysis": "..."}.'
)


@dataclass(frozen=True)
class Verdict:
    resolution: str
    confidence: float
    analysis: str | None = None


class DisputeResolver(Protocol):
    def analyze(self, reason: str, evidence: list[str]) -> Verdict | None: ...


class ResolverClient:
    """Asks an OpenAI-compatible chat endpoint for a verdict. Disabled without a base URL."""

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
    ):
        self.base_url = base_url if base_url is not None else settings.resolver_base_url
        self.model = model or settings.resolver_model
        self.api_key = api_key if api_key is not None else settings.resolver_api_key
        self.timeout = timeout or settings.resolver_timeout_seconds

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def analyze(self, reason: str, evidence: list[str]) -> Verdict | None:
        if not self.enabled:
            return None

        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        prompt = f"Reason: {reason}\nEvidence:\n" + "\n".join(f"- {item}" for item in evidence)
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    f"{self.base_url.rstrip('/')}/chat/completions",
                    headers=headers,
                    json={
                        "model": self.model,
                        "temperature": 0.1,
                        "response_format": {"type": "json_object"},
                        "messages": [
                            {"role": "system", "content": SYSTEM_PROMPT},
                            {"role": "user", "content": prompt},
                        ],
                    },
                )
                response.raise_for_status()
                content = response.json()["choices"][0]["message"]["content"]
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            logger.warning(f"Dispute resolver unavailable: {e}")
            return None

        return parse_verdict(content)


def parse_verdict(content: str) -> Verdict | None:
    """Parse the resolver's JSON reply; None when it is unusable."""
    try:
        data = json.loads(content)
        resolution = VoteChoice(str(data["resolution"]).strip().lower()).value
        confidence = max(0.0, min(100.0, float(data["confidence"])))
    except (ValueError, KeyError, TypeError) as e:
        logger.warning(f"Unparseable resolver verdict: {e}")
        return None
    analysis = data.get("analysis")
    return Verdict(resolution=resolution, confidence=confidence, analysis=str(analysis) if analysis else None)
