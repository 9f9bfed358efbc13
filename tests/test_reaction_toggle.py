from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from plurr.core import models
from plurr.core.exceptions import InvalidInputError, NotFoundError
from plurr.utils.crud import apply_reaction


async def _seed_image(db, image_id="img1", lobby_id="lob1", is_draft=False):
    db.add(models.Lobby(
        id=lobby_id, lobby_code=f"c{lobby_id}", owner_id="owner", title="Trip", images=[image_id], is_draft=is_draft,
    ))
    db.add(models.Image(id=image_id, lobby_id=lobby_id, uploader_id="owner"))
    await db.commit()


async def _reaction_rows(db, image_id="img1", user_id=None):
    query = select(models.Reaction).where(models.Reaction.image_id == image_id)
    if user_id:
        query = query.where(models.Reaction.user_id == user_id)
    result = await db.execute(query)
    return result.scalars().all()


async def _reaction_string(db, image_id="img1"):
    result = await db.execute(select(models.Image.reaction_string).where(models.Image.id == image_id))
    return result.scalar_one()


async def test_first_reaction_is_inserted(db_session):
    await _seed_image(db_session)

    assert await apply_reaction(db_session, "img1", "alice", "🔥") == ("1🔥", "🔥")
    rows = await _reaction_rows(db_session)
    assert len(rows) == 1
    assert rows[0].lobby_id == "lob1"
    assert await _reaction_string(db_session) == "1🔥"


async def test_same_value_twice_clears(db_session):
    await _seed_image(db_session)

    await apply_reaction(db_session, "img1", "alice", "🔥")
    assert await apply_reaction(db_session, "img1", "alice", "🔥") == ("0", None)
    assert await _reaction_rows(db_session) == []
    assert await _reaction_string(db_session) == "0"


async def test_like_on_unset_inserts_like(db_session):
    await _seed_image(db_session)

    assert await apply_reaction(db_session, "img1", "alice", "like") == ("1", "like")


async def test_like_clears_any_reaction(db_session):
    await _seed_image(db_session)

    await apply_reaction(db_session, "img1", "alice", "💀")
    assert await apply_reaction(db_session, "img1", "alice", "like") == ("0", None)
    assert await _reaction_rows(db_session, user_id="alice") == []


async def test_different_value_replaces_in_place(db_session):
    await _seed_image(db_session)

    await apply_reaction(db_session, "img1", "alice", "🔥")
    original = (await _reaction_rows(db_session))[0].id

    assert await apply_reaction(db_session, "img1", "alice", "💀") == ("1💀", "💀")
    rows = await _reaction_rows(db_session)
    assert [(row.id, row.reaction) for row in rows] == [(original, "💀")]


async def test_aggregate_spans_users(db_session):
    await _seed_image(db_session)

    await apply_reaction(db_session, "img1", "alice", "🔥")
    await apply_reaction(db_session, "img1", "bob", "💀")
    await apply_reaction(db_session, "img1", "carol", "like")
    reaction_string, user_reaction = await apply_reaction(db_session, "img1", "dave", "🔥")

    assert reaction_string == "4🔥💀"
    assert user_reaction == "🔥"
    assert await _reaction_string(db_session) == "4🔥💀"


async def test_duplicate_rows_are_collapsed(db_session):
    await _seed_image(db_session)
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    db_session.add_all([
        models.Reaction(id="r1", user_id="alice", lobby_id="lob1", image_id="img1", reaction="🔥", created_on=base),
        models.Reaction(id="r2", user_id="alice", lobby_id="lob1", image_id="img1", reaction="💀", created_on=base + timedelta(seconds=1)),
    ])
    await db_session.commit()

    # The oldest row wins and the toggle then applies to it
    assert await apply_reaction(db_session, "img1", "alice", "🎉") == ("1🎉", "🎉")
    rows = await _reaction_rows(db_session, user_id="alice")
    assert [(row.id, row.reaction) for row in rows] == [("r1", "🎉")]


async def test_unknown_image(db_session):
    with pytest.raises(NotFoundError):
        await apply_reaction(db_session, "missing", "alice", "🔥")


async def test_draft_image_is_hidden_from_other_users(db_session):
    await _seed_image(db_session, is_draft=True)

    with pytest.raises(NotFoundError):
        await apply_reaction(db_session, "img1", "alice", "🔥")
    assert await _reaction_rows(db_session) == []
    assert await _reaction_string(db_session) == "0"


async def test_owner_can_react_in_draft(db_session):
    await _seed_image(db_session, is_draft=True)

    assert await apply_reaction(db_session, "img1", "owner", "🔥") == ("1🔥", "🔥")


@pytest.mark.parametrize("user_id,value", [
    (None, "🔥"),
    ("", "🔥"),
    ("alice", ""),
    ("alice", "   "),
    ("alice", None),
    ("alice", "x" * 33),
])
async def test_invalid_input(db_session, user_id, value):
    await _seed_image(db_session)

    with pytest.raises(InvalidInputError):
        await apply_reaction(db_session, "img1", user_id, value)
    assert await _reaction_rows(db_session) == []
