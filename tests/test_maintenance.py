from datetime import timedelta

from bookingguard.services.api.schemas import BlacklistKind
from bookingguard.services.risk_engine import assessment_store, blacklist
from bookingguard.services.risk_engine.maintenance import cleanup_fraud_data, parse_args, redeliver_booking_flags
from bookingguard.services.risk_engine.rule_engine import RiskEvaluator
from bookingguard.services.risk_engine.velocity import subject_key

from .conftest import NOW, RecordingPublisher, make_context


async def test_cleanup_purges_expired_data(db, session_factory, velocity, clock, default_rules):
    evaluator = RiskEvaluator(session_factory, velocity, clock=clock, alert_retention_days=1)
    await evaluator.evaluate(make_context(amount=60000, days_notice=3, email="x@tempmail.com"))
    await blacklist.add_entry(db, BlacklistKind.IP, "203.0.113.9", expires_at=NOW + timedelta(hours=1))
    await blacklist.add_entry(db, BlacklistKind.EMAIL, "keep@example.com")

    cleaned = await cleanup_fraud_data(db, velocity, now=NOW + timedelta(days=2))

    assert cleaned == {"alerts": 1, "blacklist_entries": 1, "velocity_events": 3}
    assert await blacklist.is_blacklisted(db, BlacklistKind.EMAIL, "keep@example.com", NOW)
    assert await velocity.count(subject_key("email", "x@tempmail.com"), 72, NOW + timedelta(days=2)) == 0


async def test_cleanup_without_velocity_counter(db):
    assert await cleanup_fraud_data(db, now=NOW) == {"alerts": 0, "blacklist_entries": 0, "velocity_events": 0}


async def test_redeliver_booking_flags(db, session_factory, velocity, clock, default_rules):
    offline = RiskEvaluator(session_factory, velocity, publisher=RecordingPublisher(fail=True), clock=clock)
    result = await offline.evaluate(make_context(amount=60000, days_notice=3, email="x@tempmail.com"))

    assert await redeliver_booking_flags(db, RecordingPublisher(fail=True)) == 0

    publisher = RecordingPublisher()
    assert await redeliver_booking_flags(db, publisher) == 1
    assert publisher.flags[0]["booking_ref"] == "bk_1"
    assert publisher.flags[0]["assessment_id"] == str(result.assessment_id)
    assert await assessment_store.get_undelivered_flags(db) == []


def test_parse_args():
    args = parse_args(["--seed-rules", "--redeliver-flags"])
    assert args.seed_rules and args.redeliver_flags
    assert not args.create_tables
