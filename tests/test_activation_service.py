import asyncio

import pytest

from backend.app.services.activation_service import (
    add_code,
    bind_code,
    get_code,
    get_code_stats,
    list_codes,
    remove_code,
    require_code,
)
from backend.app.services.errors import (
    DeviceConflict,
    DuplicateCode,
    InvalidRequest,
    UnknownCode,
)


@pytest.mark.asyncio
async def test_add_code_normalizes(session):
    entry = await add_code(session, code="  promo-2024 ")
    await session.commit()

    assert entry.code == "PROMO-2024"
    assert entry.used is False
    assert entry.bound_device is None
    assert entry.activated_at is None
    assert entry.created_at is not None


@pytest.mark.asyncio
async def test_add_code_rejects_duplicates_in_any_case(session):
    await add_code(session, code="abc-1")
    await session.commit()

    with pytest.raises(DuplicateCode):
        await add_code(session, code="ABC-1")
    with pytest.raises(DuplicateCode):
        await add_code(session, code=" Abc-1 ")


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["", "ab", "has space", "bad!code", "x" * 51])
async def test_add_code_rejects_malformed(session, code):
    with pytest.raises(InvalidRequest):
        await add_code(session, code=code)


@pytest.mark.asyncio
async def test_bind_once_then_replay_same_timestamp(session):
    await add_code(session, code="PROMO-2024")
    await session.commit()

    first = await bind_code(session, code="promo-2024", device_id=" deviceA ")
    await session.commit()
    assert first.replayed is False
    assert first.code == "PROMO-2024"
    assert first.device_id == "deviceA"

    for _ in range(3):
        again = await bind_code(session, code="PROMO-2024", device_id="deviceA")
        await session.commit()
        assert again.replayed is True
        assert again.activated_at == first.activated_at

    entry = await get_code(session, "promo-2024", refresh=True)
    assert entry.used is True
    assert entry.bound_device == "deviceA"
    assert entry.activated_at == first.activated_at


@pytest.mark.asyncio
async def test_bind_other_device_conflicts_without_mutation(session):
    await add_code(session, code="SOLO-1")
    await session.commit()
    first = await bind_code(session, code="SOLO-1", device_id="device-a")
    await session.commit()

    for _ in range(2):
        with pytest.raises(DeviceConflict):
            await bind_code(session, code="solo-1", device_id="device-b")
        await session.rollback()

    entry = await get_code(session, "SOLO-1", refresh=True)
    assert entry.bound_device == "device-a"
    assert entry.activated_at == first.activated_at


@pytest.mark.asyncio
async def test_bind_unknown_code(session):
    with pytest.raises(UnknownCode):
        await bind_code(session, code="NOPE-123", device_id="device-a")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "code, device_id",
    [("", "device-a"), ("   ", "device-a"), ("CODE-1", ""), ("CODE-1", "  "), ("CODE-1", "ab")],
)
async def test_bind_invalid_input(session, code, device_id):
    with pytest.raises(InvalidRequest):
        await bind_code(session, code=code, device_id=device_id)


@pytest.mark.asyncio
async def test_stale_reader_cannot_rebind(session_factory):
    async with session_factory() as session:
        await add_code(session, code="RACE-1")
        await session.commit()

    async with session_factory() as winner, session_factory() as loser:
        stale = await get_code(loser, "race-1")
        assert stale.used is False

        won = await bind_code(winner, code="race-1", device_id="device-1")
        await winner.commit()

        # loser still holds the unused row in its identity map
        with pytest.raises(DeviceConflict):
            await bind_code(loser, code="race-1", device_id="device-2")

        replay = await bind_code(loser, code="race-1", device_id="device-1")
        assert replay.replayed is True
        assert replay.activated_at == won.activated_at


@pytest.mark.asyncio
async def test_remove_reports_binding_and_frees_code(session):
    await add_code(session, code="FREE-ME")
    await session.commit()
    await bind_code(session, code="FREE-ME", device_id="device-a")
    await session.commit()

    removed = await remove_code(session, code="free-me")
    await session.commit()
    assert removed.code == "FREE-ME"
    assert removed.was_used is True
    assert removed.device_id == "device-a"
    assert await get_code(session, "FREE-ME") is None

    with pytest.raises(UnknownCode):
        await remove_code(session, code="FREE-ME")

    await add_code(session, code="FREE-ME")
    await session.commit()
    rebound = await bind_code(session, code="FREE-ME", device_id="device-b")
    assert rebound.replayed is False


@pytest.mark.asyncio
async def test_remove_unused_code(session):
    await add_code(session, code="UNUSED-1")
    await session.commit()

    removed = await remove_code(session, code="unused-1")
    assert removed.was_used is False
    assert removed.device_id is None


@pytest.mark.asyncio
async def test_require_code(session):
    await add_code(session, code="GET-ME")
    await session.commit()

    entry = await require_code(session, "get-me")
    assert entry.code == "GET-ME"
    with pytest.raises(UnknownCode):
        await require_code(session, "MISSING")


@pytest.mark.asyncio
async def test_list_codes_newest_first(session):
    for code in ("FIRST", "SECOND", "THIRD"):
        await add_code(session, code=code)
        await session.commit()

    codes = [entry.code for entry in await list_codes(session)]
    assert codes == ["THIRD", "SECOND", "FIRST"]


@pytest.mark.asyncio
async def test_code_stats(session):
    for code in ("S-ONE", "S-TWO", "S-THREE"):
        await add_code(session, code=code)
    await session.commit()
    await bind_code(session, code="S-ONE", device_id="device-a")
    await bind_code(session, code="S-TWO", device_id="device-a")
    await session.commit()

    stats = await get_code_stats(session, recent_limit=10)
    assert stats.total == 3
    assert stats.used == 2
    assert stats.available == 1
    assert stats.unique_devices == 1
    assert [entry.code for entry in stats.recent] == ["S-TWO", "S-ONE"]

    limited = await get_code_stats(session, recent_limit=1)
    assert [entry.code for entry in limited.recent] == ["S-TWO"]


async def bind_in_own_session(session_factory, code: str, device_id: str):
    async with session_factory() as session:
        try:
            result = await bind_code(session, code=code, device_id=device_id)
        except DeviceConflict as exc:
            return exc
        await session.commit()
        return result


@pytest.mark.asyncio
async def test_concurrent_binds_from_different_devices(file_session_factory):
    async with file_session_factory() as session:
        await add_code(session, code="CONTESTED")
        await session.commit()

    devices = [f"dev-{n}" for n in range(6)]
    outcomes = await asyncio.gather(
        *(bind_in_own_session(file_session_factory, "contested", d) for d in devices)
    )

    winners = [o for o in outcomes if not isinstance(o, DeviceConflict)]
    assert len(winners) == 1
    assert winners[0].replayed is False
    assert sum(isinstance(o, DeviceConflict) for o in outcomes) == len(devices) - 1

    async with file_session_factory() as session:
        entry = await get_code(session, "CONTESTED")
    assert entry.used is True
    assert entry.bound_device == winners[0].device_id
    assert entry.activated_at == winners[0].activated_at


@pytest.mark.asyncio
async def test_concurrent_binds_from_same_device(file_session_factory):
    async with file_session_factory() as session:
        await add_code(session, code="SAME-DEV")
        await session.commit()

    outcomes = await asyncio.gather(
        *(bind_in_own_session(file_session_factory, "SAME-DEV", "dev-1") for _ in range(6))
    )

    assert not any(isinstance(o, DeviceConflict) for o in outcomes)
    assert [o.replayed for o in outcomes].count(False) == 1
    assert len({o.activated_at for o in outcomes}) == 1
