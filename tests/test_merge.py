import pytest

from helpers import ev, findings, result
from analysis.merge import merge_all, merge_findings, merge_results


def _five(prefix, event_type):
    return [ev(f"{prefix}-{i}", event_type=event_type, minutes=i) for i in range(5)]


def test_merging_two_findings_concatenates_and_sums():
    a = findings(_five("a", "Log Entry"), iocs=["IP: 8.8.8.8"], fmt="CSV")
    b = findings(_five("b", "Log Entry")[:3] + _five("b", "Web Request")[3:], iocs=["IP: 8.8.8.8"], fmt="SYSLOG")
    merged = merge_findings(a, b)

    assert len(merged.security_events) == 10
    assert merged.events_by_type == {"Log Entry": 8, "Web Request": 2}
    # cross-file IOCs are concatenated, not deduplicated
    assert merged.detected_iocs == ("IP: 8.8.8.8", "IP: 8.8.8.8")
    assert merged.iocs_by_category == {"IP": 2}
    assert merged.metadata.size == 200
    assert merged.file_format == "CSV+SYSLOG"
    assert merged.total_lines == 10


def test_raw_data_last_write_wins():
    merged = merge_findings(findings(raw={"Format": "CSV", "a": 1}), findings(raw={"Format": "LOG"}))
    assert merged.raw_data == {"Format": "LOG", "a": 1}


def test_counters_are_commutative():
    a = findings(_five("a", "X"))
    b = findings(_five("b", "Y")[:2])
    assert merge_findings(a, b).events_by_type == merge_findings(b, a).events_by_type


def test_merge_is_associative():
    a = result("a", findings(_five("a", "X")), score=3, actions=("a1",))
    b = result("b", findings(_five("b", "Y")), score=8, actions=("b1",))
    c = result("c", findings(_five("c", "X")), score=5, actions=("c1",))

    left = merge_results(merge_results(a, b), c)
    right = merge_results(a, merge_results(b, c))
    assert left == right
    assert merge_all([a, b, c]) == left


def test_highest_severity_result_represents_the_merge():
    a = result("a", findings(_five("a", "X")), score=3, actions=("a1",))
    b = result("b", findings(_five("b", "Y")), score=8, actions=("b1", "b2"))
    merged = merge_results(a, b)

    assert merged.file_names == ("a", "b")
    assert merged.ai.severity_score == 8
    assert merged.ai.attack_vector == "vector-b"
    assert merged.ai.recommended_actions == ("a1", "b1", "b2")
    assert len(merged.timeline.events) == 10


def test_severity_ties_go_to_the_left():
    a = result("a", findings(_five("a", "X")), score=6)
    b = result("b", findings(_five("b", "Y")), score=6)
    assert merge_results(a, b).ai.attack_vector == "vector-a"


def test_missing_insights_on_one_side():
    a = result("a", findings(_five("a", "X")))
    b = result("b", findings(_five("b", "Y")), score=4, actions=("b1",))
    assert merge_results(a, b).ai.severity_score == 4
    assert merge_results(b, a).ai.recommended_actions == ("b1",)


def test_merge_all_requires_input():
    with pytest.raises(ValueError):
        merge_all([])
    single = result("only", findings(_five("o", "X")))
    assert merge_all([single]) is single
