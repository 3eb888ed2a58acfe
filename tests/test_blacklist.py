from datetime import timedelta

import pytest

from bookingguard.common.errors import DuplicateBlacklistEntry, NotFound
from bookingguard.services.api.schemas import BlacklistKind
from bookingguard.services.risk_engine import blacklist

from .conftest import NOW

EMAIL = BlacklistKind.EMAIL
IP = BlacklistKind.IP


async def test_email_lookup_is_case_insensitive(db):
    await blacklist.add_entry(db, EMAIL, "Fraudster@Example.com", reason="chargebacks", added_by="admin_1")

    assert await blacklist.is_blacklisted(db, EMAIL, "fraudster@example.com", NOW)
    assert await blacklist.is_blacklisted(db, EMAIL, "  FRAUDSTER@EXAMPLE.COM ", NOW)
    assert not await blacklist.is_blacklisted(db, EMAIL, "someone@example.com", NOW)
    assert not await blacklist.is_blacklisted(db, EMAIL, None, NOW)


async def test_ip_lookup_matches_canonical_form(db):
    await blacklist.add_entry(db, IP, "2001:db8:0:0::1")

    assert await blacklist.is_blacklisted(db, IP, "2001:0db8::0001", NOW)
    assert not await blacklist.is_blacklisted(db, IP, "2001:db8::2", NOW)


async def test_expired_entries_stop_matching_but_are_kept(db):
    await blacklist.add_entry(db, IP, "198.51.100.9", expires_at=NOW + timedelta(hours=1))

    assert await blacklist.is_blacklisted(db, IP, "198.51.100.9", NOW)
    assert not await blacklist.is_blacklisted(db, IP, "198.51.100.9", NOW + timedelta(hours=1))
    assert await blacklist.get_entry(db, IP, "198.51.100.9") is not None


async def test_duplicate_add_leaves_entry_untouched(db):
    expires = NOW + timedelta(days=30)
    await blacklist.add_entry(db, EMAIL, "x@tempmail.com", reason="first", expires_at=expires)

    with pytest.raises(DuplicateBlacklistEntry):
        await blacklist.add_entry(db, EMAIL, "X@TEMPMAIL.COM", reason="second", expires_at=None)

    entry = await blacklist.get_entry(db, EMAIL, "x@tempmail.com")
    assert entry.reason == "first"
    assert entry.expires_at == expires


async def test_update_expiry_is_explicit(db):
    await blacklist.add_entry(db, EMAIL, "x@tempmail.com")
    entry = await blacklist.update_expiry(db, EMAIL, "x@tempmail.com", NOW - timedelta(minutes=1))

    assert entry.expires_at == NOW - timedelta(minutes=1)
    assert not await blacklist.is_blacklisted(db, EMAIL, "x@tempmail.com", NOW)
    with pytest.raises(NotFound):
        await blacklist.update_expiry(db, EMAIL, "nobody@example.com", None)


async def test_remove_entry(db):
    await blacklist.add_entry(db, IP, "203.0.113.5")
    await blacklist.remove_entry(db, IP, "203.0.113.5")

    assert not await blacklist.is_blacklisted(db, IP, "203.0.113.5", NOW)
    with pytest.raises(NotFound):
        await blacklist.remove_entry(db, IP, "203.0.113.5")


async def test_list_and_purge_expired(db):
    await blacklist.add_entry(db, IP, "203.0.113.1", expires_at=NOW - timedelta(days=1))
    await blacklist.add_entry(db, IP, "203.0.113.2")
    await blacklist.add_entry(db, EMAIL, "old@example.com", expires_at=NOW - timedelta(seconds=1))
    await blacklist.add_entry(db, EMAIL, "current@example.com", expires_at=NOW + timedelta(days=1))

    assert len(await blacklist.list_entries(db, IP)) == 2
    active_ips = await blacklist.list_entries(db, IP, include_expired=False, now=NOW)
    assert [e.value for e in active_ips] == ["203.0.113.2"]

    assert await blacklist.purge_expired(db, NOW) == 2
    assert [e.value for e in await blacklist.list_entries(db, EMAIL)] == ["current@example.com"]
    assert len(await blacklist.list_entries(db, IP)) == 1
