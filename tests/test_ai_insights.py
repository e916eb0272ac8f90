import asyncio

import pytest

import ai_insights
from ai_insights import (
    HttpTextClient, ModelInsightGenerator, ModelResult, OpenAIChatClient, TextGenerationClient,
    build_insights_prompt, create_client, extract_json,
)
from helpers import ev, findings
from infra.errors import ExternalServiceError
from infra.http import HTTPError
from insight_rules import rule_based_insights


class FakeClient(TextGenerationClient):
    model_name = "fake-model"

    def __init__(self, reply=None, error=None, delay=0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.prompts = []

    async def complete(self, system_prompt, prompt):
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


def _tf():
    events = [ev("failed login", severity="High"), ev("kernel panic", severity="Critical", minutes=1),
              ev("disk controller fault", severity="Critical", minutes=2)]
    return findings(events, iocs=["IP: 8.8.8.8"])


def test_network_failure_falls_back_to_rules():
    tf = _tf()
    gen = ModelInsightGenerator(FakeClient(error=ConnectionError("connection refused")))
    insights = asyncio.run(gen.generate_insights(tf))

    assert insights == rule_based_insights(tf)
    assert 1 <= insights.severity_score <= 10


def test_timeout_falls_back_to_rules():
    tf = _tf()
    gen = ModelInsightGenerator(FakeClient(reply="{}", delay=1.0), timeout=0.01)
    assert asyncio.run(gen.generate_insights(tf)).model_used == "rules"


def test_malformed_json_falls_back_to_rules():
    tf = _tf()
    gen = ModelInsightGenerator(FakeClient(reply="Sorry, I cannot help with that."))
    assert asyncio.run(gen.generate_insights(tf)) == rule_based_insights(tf)


def test_model_reply_is_used_and_score_clamped():
    reply = ('Here you go:\n{"attack_vector": "Credential Stuffing", "severity_score": 14, '
             '"recommended_actions": ["Lock accounts", "Rotate keys"]}\nThanks')
    tf = _tf()
    client = FakeClient(reply=reply)
    insights = asyncio.run(ModelInsightGenerator(client).generate_insights(tf))
    baseline = rule_based_insights(tf)

    assert insights.attack_vector == "Credential Stuffing"
    assert insights.severity_score == 10
    assert insights.recommended_actions == ("Lock accounts", "Rotate keys")
    # fields the model left out come from the rule-based result
    assert insights.threat_assessment == baseline.threat_assessment
    assert insights.business_impact == baseline.business_impact
    assert insights.model_used == "fake-model"
    assert "TOTAL SECURITY EVENTS: 3" in client.prompts[0]


def test_infinite_model_score_is_clamped_not_raised():
    tf = _tf()
    gen = ModelInsightGenerator(FakeClient(reply='{"severity_score": 1e999, "attack_vector": "x"}'))
    insights = asyncio.run(gen.generate_insights(tf))

    assert insights.severity_score == 10
    assert insights.attack_vector == "x"
    assert insights.model_used == "fake-model"


def test_arithmetic_errors_become_failed_results():
    result = ModelResult.ok(1).map(lambda v: v / 0)
    assert not result.is_ok
    assert result.or_else(lambda e: "fallback") == "fallback"


def test_executive_risk_level_ignores_model_opinion():
    tf = _tf()
    insights = rule_based_insights(tf)
    reply = '{"summary": "All calm.", "risk_level": "LOW", "key_findings": ["one", "two"]}'
    report = asyncio.run(ModelInsightGenerator(FakeClient(reply=reply)).generate_executive_report(tf, insights))

    assert insights.severity_score == 5
    assert report.summary == "All calm."
    assert report.key_findings == "one\ntwo"
    assert report.risk_level == "MEDIUM"


def test_executive_report_falls_back_on_error():
    tf = _tf()
    insights = rule_based_insights(tf)
    gen = ModelInsightGenerator(FakeClient(error=ExternalServiceError("503")))
    report = asyncio.run(gen.generate_executive_report(tf, insights))
    assert report.risk_level == "MEDIUM"
    assert "3 security events" in report.summary


def test_unconfigured_generator_is_unavailable_but_safe():
    gen = ModelInsightGenerator(None)
    assert not gen.is_available()
    assert asyncio.run(gen.generate_insights(_tf())).model_used == "rules"


def test_model_result_combinators():
    ok = ModelResult.ok({"a": 1})
    assert ok.map(lambda d: d["a"] + 1).or_else(lambda e: -1) == 2
    assert ok.map(lambda d: d["missing"]).or_else(lambda e: -1) == -1
    failed = ModelResult.fail(ExternalServiceError("down"))
    assert not failed.is_ok
    assert failed.map(lambda d: 1).or_else(lambda e: e.message) == "down"


def test_extract_json():
    assert extract_json('noise {"a": {"b": 2}} trailing') == {"a": {"b": 2}}
    with pytest.raises(ValueError):
        extract_json("no braces")
    with pytest.raises(ValueError):
        extract_json("")
    with pytest.raises(ValueError):
        extract_json("{not json}")


def test_prompt_samples_events():
    events = [ev(f"failed login {i}", minutes=i) for i in range(15)]
    prompt = build_insights_prompt(findings(events))
    assert "failed login 9" in prompt
    assert "failed login 10" not in prompt
    assert "... and 5 more events" in prompt


def test_create_client_from_settings():
    assert create_client({"model_backend": "none"}) is None
    assert create_client({"model_backend": "openai", "api_key": ""}) is None
    assert create_client({"model_backend": "http"}) is None

    openai_client = create_client({"model_backend": "openai", "api_key": "sk-test", "model_name": "gpt-4o-mini"})
    assert isinstance(openai_client, OpenAIChatClient)
    assert openai_client.model_name == "gpt-4o-mini"
    assert openai_client.is_configured()

    http_client = create_client({"model_backend": "http", "model_endpoint": "http://localhost:9000/generate"})
    assert isinstance(http_client, HttpTextClient)
    assert http_client.model_name == "http"


def test_http_client_reads_common_reply_shapes():
    assert HttpTextClient._text_from({"text": "a"}) == "a"
    assert HttpTextClient._text_from({"response": "b"}) == "b"
    assert HttpTextClient._text_from({"choices": [{"message": {"content": "c"}}]}) == "c"
    with pytest.raises(ExternalServiceError):
        HttpTextClient._text_from({"unexpected": 1})


def test_http_client_wraps_transport_errors(monkeypatch):
    async def failing_post(url, data=None, **kwargs):
        raise HTTPError(502, "bad gateway")

    monkeypatch.setattr(ai_insights, "post_json", failing_post)
    client = HttpTextClient("http://model.invalid/generate")
    with pytest.raises(ExternalServiceError):
        asyncio.run(client.complete("system", "prompt"))


def test_http_client_end_to_end_through_generator(monkeypatch):
    sent = {}

    async def fake_post(url, data=None, **kwargs):
        sent.update(url=url, body=data, headers=kwargs.get("headers"))
        return {"text": '{"severity_score": 3, "attack_vector": "Phishing"}'}

    monkeypatch.setattr(ai_insights, "post_json", fake_post)
    client = HttpTextClient("http://model.local/generate", model="local-llm", api_key="k")
    insights = asyncio.run(ModelInsightGenerator(client).generate_insights(_tf()))

    assert insights.attack_vector == "Phishing"
    assert insights.severity_score == 3
    assert insights.model_used == "local-llm"
    assert sent["url"] == "http://model.local/generate"
    assert sent["headers"] == {"Authorization": "Bearer k"}
    assert sent["body"]["model"] == "local-llm"
