from datetime import datetime, timezone

from helpers import FAILED_LOGIN_CSV, ev, metadata
from analysis.correlation import correlate
from analysis.normalizer import normalize
from analysis.timeline import build_timeline
from parsers.structured import CsvLogParser


def test_failed_logins_from_one_ip_in_one_minute(write_file):
    tf = CsvLogParser().parse(write_file("logins.csv", FAILED_LOGIN_CSV))
    groups = correlate(normalize(tf.security_events))

    assert [g.key for g in groups] == ["IP:10.0.0.5", "TIME:2024-03-01T10:15:00+00:00"]
    assert all(len(g.events) == 3 for g in groups)


def test_singletons_do_not_form_groups():
    events = [ev(minutes=0, ip="1.1.1.1"), ev(minutes=5, ip="2.2.2.2")]
    assert correlate(events) == ()


def test_group_members_keep_input_order():
    events = [ev("a", minutes=1, ip="1.1.1.1"), ev("b", minutes=7, ip="1.1.1.1"), ev("c", minutes=3, ip="1.1.1.1")]
    (group,) = correlate(events)
    assert [e.description for e in group.events] == ["a", "b", "c"]


def test_empty_log_gets_one_synthesized_timeline_entry(write_file):
    tf = CsvLogParser().parse(write_file("empty.log", ""))
    timeline = build_timeline(tf.security_events, tf.metadata)

    assert tf.security_events == ()
    assert len(timeline.events) == 1
    assert timeline.events[0].source == "File System"
    assert timeline.first_activity == timeline.last_activity == tf.metadata.created


def test_timeline_is_sorted_and_bounded():
    events = [ev("late", minutes=30, event_type="B"), ev("early", minutes=-5, event_type="A")]
    timeline = build_timeline(events, metadata())

    assert [e.event for e in timeline.events] == ["early", "late"]
    assert timeline.events[0].source == "A"
    assert timeline.first_activity == datetime(2024, 3, 1, 9, 55, tzinfo=timezone.utc)
    assert timeline.last_activity == datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)
