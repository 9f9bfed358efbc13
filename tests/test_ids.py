import pytest

from plurr.core import models
from plurr.core.exceptions import ResourceExhaustedError
from plurr.utils import ids
from plurr.utils.ids import ID_ALPHABET, allocate_unique_id, new_id, new_join_code


def test_new_id_uses_base36_alphabet():
    value = new_id(40)
    assert len(value) == 40
    assert set(value) <= set(ID_ALPHABET)


def test_new_id_rejects_non_positive_length():
    with pytest.raises(ValueError):
        new_id(0)


def test_join_code_is_six_characters():
    code = new_join_code()
    assert len(code) == 6
    assert code == code.lower()


async def test_allocate_unique_id_returns_free_value(db_session):
    value = await allocate_unique_id(db_session, models.Lobby.id, 12)
    assert len(value) == 12


async def test_allocate_unique_id_retries_on_collision(db_session, monkeypatch):
    db_session.add(models.Lobby(id="taken", lobby_code="aaaaaa", owner_id="u", title="t", images=[]))
    await db_session.commit()

    candidates = iter(["taken", "taken", "free"])
    monkeypatch.setattr(ids, "new_id", lambda length=16: next(candidates))

    assert await allocate_unique_id(db_session, models.Lobby.id, 5) == "free"


async def test_allocate_unique_id_gives_up(db_session, monkeypatch):
    db_session.add(models.Lobby(id="taken", lobby_code="aaaaaa", owner_id="u", title="t", images=[]))
    await db_session.commit()
    monkeypatch.setattr(ids, "new_id", lambda length=16: "taken")

    with pytest.raises(ResourceExhaustedError) as exc_info:
        await allocate_unique_id(db_session, models.Lobby.id, 5, max_attempts=3)
    assert exc_info.value.status_code == 500
