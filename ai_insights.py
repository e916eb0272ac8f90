# ai_insights.py - Model-backed insights with rule-based fallback

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from openai import AsyncOpenAI, OpenAIError

import constants
from datamodels.findings import AIInsights, ExecutiveReport, TechnicalFindings
from infra.errors import ExternalServiceError
from infra.http import HTTPError, post_json
from insight_rules import (
    InsightGenerator, build_executive_report, clamp_severity, risk_level_for, rule_based_insights,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")

ANALYST_SYSTEM_PROMPT = (
    "You are a senior cybersecurity analyst specializing in incident response and threat analysis. "
    "Respond only with a single valid JSON object."
)
EXECUTIVE_SYSTEM_PROMPT = (
    "You are a cybersecurity executive consultant who explains technical findings in business terms. "
    "Respond only with a single valid JSON object."
)


# ----- Result type -----

@dataclass(frozen=True)
class ModelResult(Generic[T]):
    """Either a value or an ExternalServiceError, never both."""
    value: Optional[T] = None
    error: Optional[ExternalServiceError] = None

    @classmethod
    def ok(cls, value: T) -> "ModelResult[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: ExternalServiceError) -> "ModelResult[T]":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def map(self, fn: Callable[[T], U]) -> "ModelResult[U]":
        """Apply fn to the value; a shape error in fn becomes a failed result."""
        if not self.is_ok:
            return ModelResult(error=self.error)
        try:
            return ModelResult(value=fn(self.value))
        except (KeyError, TypeError, ValueError, AttributeError, ArithmeticError) as e:
            return ModelResult(error=ExternalServiceError(f"Unusable model response: {e}"))

    def or_else(self, fallback: Callable[[ExternalServiceError], T]) -> T:
        return self.value if self.is_ok else fallback(self.error)


def extract_json(text: str) -> Dict[str, Any]:
    """Decode the JSON object between the first '{' and the last '}'."""
    if not text:
        raise ValueError("empty response")
    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end <= start:
        raise ValueError("no JSON object in response")
    data = json.loads(text[start:end + 1])
    if not isinstance(data, dict):
        raise ValueError("response JSON is not an object")
    return data


# ----- Transports -----

class TextGenerationClient(ABC):
    """Sends a prompt to an external text-generation service and returns its text."""

    model_name = "unknown"

    def is_configured(self) -> bool:
        return True

    @abstractmethod
    async def complete(self, system_prompt: str, prompt: str) -> str:
        ...


class OpenAIChatClient(TextGenerationClient):
    """OpenAI (or OpenAI-compatible) chat completions."""

    def __init__(self, api_key: str, model: str = "gpt-3.5-turbo", base_url: Optional[str] = None,
                 timeout: float = 30.0, max_tokens: int = 1000, temperature: float = 0.3, max_retries: int = 2):
        self.api_key = api_key
        self.model_name = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url or None,
                                   timeout=timeout, max_retries=max_retries) if api_key else None

    def is_configured(self) -> bool:
        return self._client is not None

    async def complete(self, system_prompt: str, prompt: str) -> str:
        if self._client is None:
            raise ExternalServiceError("OpenAI API key not configured")
        try:
            response = await self._client.chat.completions.create(
                model=self.model_name,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except OpenAIError as e:
            raise ExternalServiceError(f"OpenAI request failed: {e}") from e
        if not response.choices:
            raise ExternalServiceError("OpenAI returned no choices")
        return (response.choices[0].message.content or "").strip()


class HttpTextClient(TextGenerationClient):
    """Plain HTTP endpoint: POST {"system", "prompt", ...} and read the text back."""

    def __init__(self, endpoint: str, model: str = "", api_key: str = "", timeout: float = 30.0,
                 max_tokens: int = 1000, temperature: float = 0.3, max_retries: int = 2):
        self.endpoint = endpoint
        self.model_name = model or "http"
        self.api_key = api_key
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_retries = max_retries

    def is_configured(self) -> bool:
        return bool(self.endpoint)

    @staticmethod
    def _text_from(payload: Dict[str, Any]) -> str:
        for key in ("text", "response", "content", "output"):
            if isinstance(payload.get(key), str):
                return payload[key]
        choices = payload.get("choices")
        if isinstance(choices, list) and choices:
            first = choices[0] or {}
            message = first.get("message") or {}
            return message.get("content") or first.get("text") or ""
        raise ExternalServiceError("Response body has no text field")

    async def complete(self, system_prompt: str, prompt: str) -> str:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        body = {
            "model": self.model_name,
            "system": system_prompt,
            "prompt": prompt,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        try:
            payload = await post_json(self.endpoint, body, timeout=self.timeout,
                                      headers=headers, max_retries=self.max_retries)
        except HTTPError as e:
            raise ExternalServiceError(f"Model endpoint failed: {e}") from e
        if not isinstance(payload, dict):
            raise ExternalServiceError("Response body is not a JSON object")
        return self._text_from(payload)


def create_client(cfg: Dict[str, Any]) -> Optional[TextGenerationClient]:
    """Build the configured transport, or None when the backend is off or incomplete."""
    backend = cfg.get("model_backend", "none")
    common = dict(timeout=cfg.get("model_timeout", 30.0), max_tokens=cfg.get("max_tokens", 1000),
                  temperature=cfg.get("temperature", 0.3))
    if backend == "openai":
        if not cfg.get("api_key"):
            logger.warning("No OpenAI API key found in configuration; model-backed insights disabled.")
            return None
        return OpenAIChatClient(api_key=cfg["api_key"], model=cfg.get("model_name", "gpt-3.5-turbo"),
                                base_url=cfg.get("model_endpoint") or None, **common)
    if backend == "http":
        if not cfg.get("model_endpoint"):
            logger.warning("model_backend is 'http' but no model_endpoint is set; model-backed insights disabled.")
            return None
        return HttpTextClient(endpoint=cfg["model_endpoint"], model=cfg.get("model_name", ""),
                              api_key=cfg.get("api_key", ""), **common)
    return None


# ----- Prompts -----

def build_insights_prompt(findings: TechnicalFindings) -> str:
    events = findings.security_events
    iocs = findings.detected_iocs
    lines = [
        "Analyze the following security findings extracted from a log file.",
        "",
        f"FILE SIZE: {findings.metadata.size} bytes",
        f"FILE FORMAT: {findings.file_format or 'unknown'}",
        f"TOTAL SECURITY EVENTS: {len(events)}",
        f"TOTAL IOCS: {len(iocs)}",
        f"EVENTS BY TYPE: {json.dumps(findings.events_by_type, sort_keys=True)}",
        f"IOCS BY CATEGORY: {json.dumps(findings.iocs_by_category, sort_keys=True)}",
        "",
        f"=== SECURITY EVENTS (first {constants.PROMPT_EVENT_SAMPLE}) ===",
    ]
    for ev in events[:constants.PROMPT_EVENT_SAMPLE]:
        lines.append(f"{ev.timestamp.isoformat()} | {ev.severity} | {ev.event_type} | {ev.description}")
    if len(events) > constants.PROMPT_EVENT_SAMPLE:
        lines.append(f"... and {len(events) - constants.PROMPT_EVENT_SAMPLE} more events")
    lines.append("")
    lines.append(f"=== INDICATORS OF COMPROMISE (first {constants.PROMPT_IOC_SAMPLE}) ===")
    lines.extend(f"- {ioc}" for ioc in iocs[:constants.PROMPT_IOC_SAMPLE])
    lines += [
        "",
        "Respond with a JSON object with exactly these fields:",
        '{"attack_vector": "<primary attack vector>", "threat_assessment": "<assessment>", '
        '"severity_score": <integer 1-10>, "recommended_actions": ["<action>", "..."], '
        '"business_impact": "<impact>"}',
    ]
    return "\n".join(lines)


def build_executive_prompt(findings: TechnicalFindings, insights: AIInsights) -> str:
    lines = [
        "Write an executive summary of this security analysis for non-technical leadership.",
        "",
        f"TOTAL SECURITY EVENTS: {len(findings.security_events)}",
        f"TOTAL IOCS: {len(findings.detected_iocs)}",
        f"ATTACK VECTOR: {insights.attack_vector}",
        f"THREAT ASSESSMENT: {insights.threat_assessment}",
        f"SEVERITY SCORE: {insights.severity_score}/10",
        f"BUSINESS IMPACT: {insights.business_impact}",
        "RECOMMENDED ACTIONS:",
    ]
    lines.extend(f"- {a}" for a in insights.recommended_actions)
    lines += [
        "",
        "Respond with a JSON object with exactly these fields:",
        '{"summary": "<2-3 sentences>", "key_findings": ["<finding>", "..."], '
        '"risk_level": "LOW|MEDIUM|HIGH", "immediate_actions": ["<action>", "..."], '
        '"long_term_recommendations": ["<recommendation>", "..."]}',
    ]
    return "\n".join(lines)


def _text_field(data: Dict[str, Any], key: str, default: str, joiner: str = "\n") -> str:
    value = data.get(key)
    if isinstance(value, list):
        items = [str(v).strip() for v in value if str(v).strip()]
        return joiner.join(items) if items else default
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _list_field(data: Dict[str, Any], key: str, default: tuple) -> tuple:
    value = data.get(key)
    if isinstance(value, str) and value.strip():
        return (value.strip(),)
    if isinstance(value, list):
        items = tuple(str(v).strip() for v in value if str(v).strip())
        if items:
            return items
    return default


# ----- Generator -----

class ModelInsightGenerator(InsightGenerator):
    """Asks an external model for insights. Any failure (transport, timeout,
    status, missing or malformed JSON) yields the rule-based result instead;
    no exception leaves this class.
    """

    name = "model"

    def __init__(self, client: Optional[TextGenerationClient], timeout: float = 30.0):
        self.client = client
        self.timeout = timeout

    def is_available(self) -> bool:
        return self.client is not None and self.client.is_configured()

    async def _ask(self, system_prompt: str, prompt: str) -> ModelResult[Dict[str, Any]]:
        if not self.is_available():
            return ModelResult.fail(ExternalServiceError("No model client configured"))
        try:
            text = await asyncio.wait_for(self.client.complete(system_prompt, prompt), timeout=self.timeout)
            return ModelResult.ok(extract_json(text))
        except asyncio.TimeoutError:
            return ModelResult.fail(ExternalServiceError(f"Model call timed out after {self.timeout}s"))
        except ExternalServiceError as e:
            return ModelResult.fail(e)
        except ValueError as e:
            return ModelResult.fail(ExternalServiceError(f"Malformed model response: {e}"))
        except Exception as e:
            logger.error("Unexpected model client failure", exc_info=True)
            return ModelResult.fail(ExternalServiceError(f"Model call failed: {e}"))

    def _fallback(self, what: str, baseline):
        def use_baseline(error: ExternalServiceError):
            logger.warning(f"Model-backed {what} unavailable, using rule-based result: {error}")
            return baseline
        return use_baseline

    async def generate_insights(self, findings: TechnicalFindings) -> AIInsights:
        baseline = rule_based_insights(findings)
        model_name = getattr(self.client, "model_name", "model")

        def to_insights(data: Dict[str, Any]) -> AIInsights:
            raw_score = data.get("severity_score")
            score = clamp_severity(raw_score) if raw_score is not None else baseline.severity_score
            return AIInsights(
                attack_vector=_text_field(data, "attack_vector", baseline.attack_vector, ", "),
                threat_assessment=_text_field(data, "threat_assessment", baseline.threat_assessment, " "),
                severity_score=score,
                recommended_actions=_list_field(data, "recommended_actions", baseline.recommended_actions),
                business_impact=_text_field(data, "business_impact", baseline.business_impact, " "),
                model_used=model_name,
            )

        result = await self._ask(ANALYST_SYSTEM_PROMPT, build_insights_prompt(findings))
        return result.map(to_insights).or_else(self._fallback("insights", baseline))

    async def generate_executive_report(self, findings: TechnicalFindings, insights: AIInsights) -> ExecutiveReport:
        baseline = build_executive_report(findings, insights)
        # Risk level always comes from the shared banding, whatever the model says
        risk = risk_level_for(clamp_severity(insights.severity_score))

        def to_report(data: Dict[str, Any]) -> ExecutiveReport:
            return ExecutiveReport(
                summary=_text_field(data, "summary", baseline.summary, " "),
                key_findings=_text_field(data, "key_findings", baseline.key_findings),
                risk_level=risk,
                immediate_actions=_text_field(data, "immediate_actions", baseline.immediate_actions, "; "),
                long_term_recommendations=_text_field(data, "long_term_recommendations",
                                                      baseline.long_term_recommendations),
            )

        result = await self._ask(EXECUTIVE_SYSTEM_PROMPT, build_executive_prompt(findings, insights))
        return result.map(to_report).or_else(self._fallback("executive report", baseline))
