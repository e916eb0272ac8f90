# insight_rules.py - Deterministic severity, attack-vector and report rules

import math
import re
from abc import ABC, abstractmethod
from collections import Counter
from typing import Dict, List, Sequence, Tuple

from datamodels.findings import AIInsights, ExecutiveReport, SecurityEvent, TechnicalFindings

MIN_SEVERITY = 1
MAX_SEVERITY = 10

GENERAL_VECTOR = "General Security Event"
AUTH_VECTOR = "Authentication Attack"
NETWORK_VECTOR = "Network Intrusion"

# (label, keywords on description/type, event categories), checked in order
VECTOR_RULES: List[Tuple[str, re.Pattern, Tuple[str, ...]]] = [
    (AUTH_VECTOR, re.compile(r"\b(?:login|logon|authentication)\b", re.I), ("auth",)),
    (NETWORK_VECTOR, re.compile(r"\b(?:network|connection)\b", re.I), ("network",)),
    ("Malware", re.compile(r"\b(?:malware|virus|trojan)\b", re.I), ("malware",)),
    ("Privilege Escalation", re.compile(r"\b(?:privilege|escalation|admin)\b", re.I), ("privilege",)),
    ("Data Exfiltration", re.compile(r"\b(?:data|exfiltration|transfer)\b", re.I), ("exfiltration",)),
    ("Denial of Service", re.compile(r"\b(?:denial|dos|flood)\b", re.I), ()),
    ("Code Injection", re.compile(r"\b(?:injection|sql|xss)\b", re.I), ("injection",)),
]

INCIDENT_RESPONSE_ACTIONS = [
    "Initiate incident response procedures immediately",
    "Isolate affected systems from the network",
    "Preserve forensic evidence and system images",
    "Notify security leadership and relevant stakeholders",
]
IOC_ACTIONS = [
    "Block identified malicious IP addresses and domains at the perimeter",
    "Hunt across the environment for the identified indicators of compromise",
    "Share indicators with threat intelligence platforms",
]
AUTH_ACTIONS = [
    "Reset credentials for affected accounts",
    "Enforce multi-factor authentication",
    "Review account lockout and password policies",
]
NETWORK_ACTIONS = [
    "Review firewall rules and network segmentation",
    "Inspect network traffic for signs of lateral movement",
    "Enable enhanced monitoring on affected network segments",
]
MONITORING_ACTIONS = [
    "Continue routine security monitoring",
    "Review logs for anomalous patterns",
    "Verify that security controls are functioning as expected",
    "Schedule a follow-up review of this evidence",
]
BASELINE_LONG_TERM = [
    "Implement continuous security monitoring and alerting",
    "Conduct regular security awareness training",
    "Establish and regularly test an incident response plan",
    "Perform periodic vulnerability assessments and patching",
    "Review and enforce least-privilege access policies",
]
NETWORK_LONG_TERM = "Strengthen network segmentation and access controls"
HUNTING_LONG_TERM = "Implement advanced threat intelligence and hunting capabilities"


# ----- Shared banding (used by every generator) -----

def clamp_severity(value) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return MIN_SEVERITY
    if math.isnan(number):
        return MIN_SEVERITY
    if math.isinf(number):
        return MAX_SEVERITY if number > 0 else MIN_SEVERITY
    score = int(round(number))
    return max(MIN_SEVERITY, min(MAX_SEVERITY, score))


def risk_level_for(score: int) -> str:
    if score > 7:
        return "HIGH"
    if score > 4:
        return "MEDIUM"
    return "LOW"


def business_impact_for(score: int) -> str:
    if score >= 8:
        return ("SEVERE: Significant risk of data breach, operational disruption and regulatory "
                "exposure. Executive attention required.")
    if score >= 6:
        return "HIGH: Potential for service disruption or data exposure if not contained promptly."
    if score >= 4:
        return "MODERATE: Limited impact expected; remediation should be scheduled in the near term."
    if score >= 2:
        return "LOW: Minor impact on operations; address through standard security processes."
    return "MINIMAL: No meaningful business impact identified."


# ----- Event statistics -----

def severity_counts(events: Sequence[SecurityEvent]) -> Dict[str, int]:
    return {
        "critical": sum(1 for ev in events if ev.severity == "Critical"),
        "high": sum(1 for ev in events if ev.severity == "High"),
        "malicious": sum(1 for ev in events if ev.is_malicious),
    }


def compute_severity(findings: TechnicalFindings) -> int:
    events = findings.security_events
    counts = severity_counts(events)
    score = (
        min(len(events) // 10, 3)
        + min(len(findings.detected_iocs) // 5, 2)
        + 2 * counts["critical"]
        + counts["high"]
        + counts["malicious"]
    )
    return clamp_severity(score)


def classify_event(ev: SecurityEvent) -> str:
    text = f"{ev.description} {ev.event_type}"
    for label, pattern, categories in VECTOR_RULES:
        if ev.category in categories or pattern.search(text):
            return label
    return GENERAL_VECTOR


def vector_tally(events: Sequence[SecurityEvent]) -> Counter:
    return Counter(classify_event(ev) for ev in events)


def attack_vector(events: Sequence[SecurityEvent]) -> str:
    """Plurality label, with up to two runners-up ("X (with Y, Z)")."""
    tally = vector_tally(events)
    if not tally:
        return GENERAL_VECTOR
    # Counter keeps first-encountered order; sorted() is stable
    ranked = sorted(tally.items(), key=lambda item: -item[1])
    primary = ranked[0][0]
    secondary = [label for label, _ in ranked[1:3]]
    return f"{primary} (with {', '.join(secondary)})" if secondary else primary


def threat_assessment(findings: TechnicalFindings) -> str:
    counts = severity_counts(findings.security_events)
    iocs = len(findings.detected_iocs)
    if counts["critical"] > 5 or counts["malicious"] > 3:
        return ("CRITICAL THREAT DETECTED: Multiple critical events and malicious activity indicate a likely "
                "active compromise. Immediate incident response is required.")
    if counts["critical"] > 0 or counts["high"] > 10 or iocs > 20:
        return ("HIGH THREAT LEVEL: Critical or numerous high severity events were observed alongside "
                "indicators of compromise. Prompt investigation is recommended.")
    if counts["high"] > 0 or iocs > 5:
        return ("MODERATE THREAT LEVEL: Suspicious activity was detected that warrants investigation "
                "and closer monitoring.")
    return "LOW THREAT LEVEL: No significant threats identified. Continue standard monitoring."


def recommended_actions(findings: TechnicalFindings) -> List[str]:
    events = findings.security_events
    counts = severity_counts(events)
    labels = set(vector_tally(events))
    actions: List[str] = []
    if counts["critical"] > 0 or counts["malicious"] > 0:
        actions.extend(INCIDENT_RESPONSE_ACTIONS)
    if len(findings.detected_iocs) > 10:
        actions.extend(IOC_ACTIONS)
    if AUTH_VECTOR in labels:
        actions.extend(AUTH_ACTIONS)
    if NETWORK_VECTOR in labels:
        actions.extend(NETWORK_ACTIONS)
    return actions or list(MONITORING_ACTIONS)


def _top(counts: Dict[str, int], n: int = 3) -> List[Tuple[str, int]]:
    return sorted(counts.items(), key=lambda item: -item[1])[:n]


def build_executive_report(findings: TechnicalFindings, insights: AIInsights) -> ExecutiveReport:
    events = findings.security_events
    score = clamp_severity(insights.severity_score)
    risk = risk_level_for(score)
    critical = severity_counts(events)["critical"]

    summary = (
        f"Analysis of {len(events)} security events identified {critical} critical events and "
        f"{len(findings.detected_iocs)} indicators of compromise. "
        f"The primary attack vector is {insights.attack_vector}. "
        f"Overall severity is rated {score}/10 ({risk} risk)."
    )
    bullets = [f"• {etype}: {count} events" for etype, count in _top(findings.events_by_type)]
    bullets += [f"• {cat} indicators: {count}" for cat, count in _top(findings.iocs_by_category)]
    bullets.append(f"• Attack vector: {insights.attack_vector}")
    bullets.append(f"• Severity score: {score}/10")

    long_term = list(BASELINE_LONG_TERM)
    if NETWORK_VECTOR in vector_tally(events):
        long_term.append(NETWORK_LONG_TERM)
    if len(findings.detected_iocs) > 20:
        long_term.append(HUNTING_LONG_TERM)

    return ExecutiveReport(
        summary=summary,
        key_findings="\n".join(bullets),
        risk_level=risk,
        immediate_actions="; ".join(insights.recommended_actions[:3]),
        long_term_recommendations="\n".join(long_term),
    )


def rule_based_insights(findings: TechnicalFindings) -> AIInsights:
    score = compute_severity(findings)
    return AIInsights(
        attack_vector=attack_vector(findings.security_events),
        threat_assessment=threat_assessment(findings),
        severity_score=score,
        recommended_actions=tuple(recommended_actions(findings)),
        business_impact=business_impact_for(score),
        model_used="rules",
    )


class InsightGenerator(ABC):
    """Contract shared by the rule-based and model-backed generators."""

    name = "base"

    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    async def generate_insights(self, findings: TechnicalFindings) -> AIInsights:
        ...

    @abstractmethod
    async def generate_executive_report(self, findings: TechnicalFindings, insights: AIInsights) -> ExecutiveReport:
        ...


class RuleBasedInsightGenerator(InsightGenerator):
    name = "rules"

    def is_available(self) -> bool:
        return True

    async def generate_insights(self, findings: TechnicalFindings) -> AIInsights:
        return rule_based_insights(findings)

    async def generate_executive_report(self, findings: TechnicalFindings, insights: AIInsights) -> ExecutiveReport:
        return build_executive_report(findings, insights)
