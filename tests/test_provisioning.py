from validapass.model.participants import ParticipantStore
from validapass.provisioning import ensure_participant, ensure_ticket


async def test_one_participant_per_email(db, gated, count_rows):
    ps = ParticipantStore(db=db, gated=gated)

    pid, created = await ensure_participant(
        ps, email="ana@example.com", name="Ana Lima", phone=None,
        category="Wolf Gold", transaction_id="t-1",
    )
    assert created

    again, created = await ensure_participant(
        ps, email="ana@example.com", name="Another Name", phone=None,
        category="VIP Wolf", transaction_id="t-2",
    )
    assert again == pid
    assert not created
    assert await count_rows("participants") == 1

    stored = await ps.get(pid)
    # existing participants are never renamed or recategorized
    assert stored["name"] == "Ana Lima"
    assert stored["category"] == "Wolf Gold"


async def test_phone_is_backfilled_but_never_overwritten(db, gated):
    ps = ParticipantStore(db=db, gated=gated)
    kw = dict(email="bia@example.com", name="Bia", category="Wolf Gold")

    pid, _ = await ensure_participant(ps, phone=None, **kw)
    assert (await ps.get(pid))["phone"] is None

    await ensure_participant(ps, phone="11911112222", **kw)
    assert (await ps.get(pid))["phone"] == "11911112222"

    await ensure_participant(ps, phone="21933334444", **kw)
    assert (await ps.get(pid))["phone"] == "11911112222"


async def test_backfill_phone_is_conditional(db, gated):
    ps = ParticipantStore(db=db, gated=gated)
    pid = await ps.create(name="Caio", email="caio@example.com",
                          phone="11900000000", category="Wolf Black")
    assert not await ps.backfill_phone(pid, "11999999999")
    assert (await ps.get(pid))["phone"] == "11900000000"


async def test_ticket_is_created_once(db, gated, count_rows):
    ps = ParticipantStore(db=db, gated=gated)
    pid, _ = await ensure_participant(
        ps, email="davi@example.com", name="Davi", phone=None,
        category="Camarote",
    )

    tid, created = await ensure_ticket(ps, pid)
    assert created
    again, created = await ensure_ticket(ps, pid)
    assert again == tid
    assert not created
    assert await count_rows("tickets") == 1

    ticket = await ps.get_ticket(pid)
    assert ticket["qr_code"] == pid
    assert not ticket["is_validated"]


async def test_presence_is_marked_once_per_day(db, gated):
    ps = ParticipantStore(db=db, gated=gated)
    pid, _ = await ensure_participant(
        ps, email="eva@example.com", name="Eva", phone=None,
        category="Wolf Gold",
    )
    await ensure_ticket(ps, pid)

    # 2025-09-24 13:00 UTC is 10:00 at the venue
    ts = 1758718800.0
    first = await ps.mark_present(pid, ts=ts)
    assert first == {
        "date": "2025-09-24",
        "already_validated": False,
        "presencas": {"2025-09-24": True},
    }
    second = await ps.mark_present(pid, ts=ts + 60)
    assert second["already_validated"]

    # next day adds a second key
    third = await ps.mark_present(pid, ts=ts + 86400)
    assert not third["already_validated"]
    assert set(third["presencas"]) == {"2025-09-24", "2025-09-25"}

    ticket = await ps.get_ticket(pid)
    assert ticket["is_validated"]
    assert ticket["validated_at"] == ts + 86400


async def test_unknown_participant_presence(db, gated):
    ps = ParticipantStore(db=db, gated=gated)
    assert await ps.mark_present("nope") is None
