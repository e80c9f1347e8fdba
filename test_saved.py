import pytest

from movie_trends.errors import AlreadySaved
from movie_trends.saved import SavedMovies


@pytest.fixture
def saved(store, clock):
    return SavedMovies(store, clock=clock)


@pytest.mark.asyncio
async def test_save_and_check(saved, make_movie):
    assert await saved.is_saved(42) is False

    movie = await saved.save(make_movie(poster_path="/dk.jpg"), genre="Action")

    assert movie.movie_id == 42
    assert movie.watched is False
    assert movie.genre == "Action"
    assert movie.poster_url.endswith("/dk.jpg")
    assert await saved.is_saved(42) is True


@pytest.mark.asyncio
async def test_saving_twice_raises(saved, make_movie):
    await saved.save(make_movie())
    with pytest.raises(AlreadySaved):
        await saved.save(make_movie())


@pytest.mark.asyncio
async def test_unsave(saved, make_movie):
    await saved.save(make_movie())
    assert await saved.unsave(42) is True
    assert await saved.is_saved(42) is False
    assert await saved.unsave(42) is False


@pytest.mark.asyncio
async def test_list_saved_newest_first(saved, make_movie):
    for movie_id in (1, 2, 3):
        await saved.save(make_movie(movie_id=movie_id, title=f"M{movie_id}"))

    assert [m.movie_id for m in await saved.list_saved()] == [3, 2, 1]
    assert len(await saved.list_saved(limit=2)) == 2


@pytest.mark.asyncio
async def test_set_watched(saved, make_movie):
    movie = await saved.save(make_movie())
    updated = await saved.set_watched(movie.id, True)
    assert updated.watched is True
