import pytest

from catalog import (
    ALL_GENRES,
    CatalogMovie,
    CollectionFormatError,
    MovieCache,
    Summary,
    ViewState,
    genre_options,
    parse_collection,
    sort_movies,
    summarize,
    view,
    visible_movies,
)


@pytest.fixture
def movies():
    return parse_collection([
        {"_id": "1", "name": "Dune", "year": 2021, "rating": 8, "genre": "Sci-Fi",
         "description": "Spice and sandworms"},
        {"_id": "2", "name": "Arrival", "year": 2016, "rating": 7.9, "genre": "Sci-Fi",
         "description": "Linguist meets heptapods"},
        {"_id": "3", "name": "Heat", "releaseYear": 1995, "rating": 8.3, "genre": "Crime"},
    ])


def names(items):
    return [m.name for m in items]


# ---------- boundary parsing ----------
def test_parse_accepts_api_envelope():
    payload = {"status": "success", "data": {"movies": [{"id": "a", "title": "Dune", "genres": ["Sci-Fi", "Drama"],
                                                         "year": 2021}]}}
    (movie,) = parse_collection(payload)
    assert (movie.id, movie.name, movie.genre, movie.year) == ("a", "Dune", "Sci-Fi", 2021)


@pytest.mark.parametrize("key", ["data", "movies", "results"])
def test_parse_accepts_wrapped_lists(key):
    assert len(parse_collection({key: [{"id": "x"}]})) == 1


def test_parse_none_is_empty():
    assert parse_collection(None) == ()


@pytest.mark.parametrize("payload", ["oops", 42, {"unexpected": True}])
def test_parse_rejects_other_shapes(payload):
    with pytest.raises(CollectionFormatError):
        parse_collection(payload)


def test_parse_drops_malformed_entries():
    parsed = parse_collection([None, "x", {"name": "no id"}, {"_id": "ok"}])
    assert [m.id for m in parsed] == ["ok"]


def test_missing_text_fields_become_empty():
    (movie,) = parse_collection([{"_id": "1", "name": None, "rating": "high"}])
    assert movie.name == "" and movie.description == "" and movie.genre == ""
    assert movie.rating is None


# ---------- genres ----------
def test_genres_always_start_with_all(movies):
    assert genre_options(movies) == (ALL_GENRES, "Sci-Fi", "Crime")


def test_genres_of_empty_collection():
    assert genre_options(()) == (ALL_GENRES,)


# ---------- filtering ----------
def test_search_is_case_insensitive_substring(movies):
    assert names(visible_movies(movies, ViewState(search="dun"))) == ["Dune"]


def test_search_matches_description(movies):
    assert names(visible_movies(movies, ViewState(search="HEPTA"))) == ["Arrival"]


def test_genre_filter_is_exact(movies):
    assert names(visible_movies(movies, ViewState(genre="Crime"))) == ["Heat"]
    assert visible_movies(movies, ViewState(genre="crime")) == []


def test_empty_search_equals_genre_only_filter(movies):
    genre_only = [m for m in movies if m.genre == "Sci-Fi"]
    state = ViewState(search="", genre="Sci-Fi")
    assert visible_movies(movies, state) == sort_movies(genre_only, state.sort_key, state.sort_order)


def test_movies_missing_text_are_kept_for_empty_search():
    parsed = parse_collection([{"_id": "1"}, {"_id": "2", "name": "Alien"}])
    assert len(visible_movies(parsed, ViewState())) == 2
    assert names(visible_movies(parsed, ViewState(search="ali"))) == ["Alien"]


# ---------- sorting ----------
def test_sort_by_name_ascending():
    pair = parse_collection([{"_id": "1", "name": "Dune", "year": 2021, "rating": 8},
                             {"_id": "2", "name": "Arrival", "year": 2016, "rating": 7.9}])
    state = ViewState().toggle_sort("year").toggle_sort("name")
    assert names(visible_movies(pair, state)) == ["Arrival", "Dune"]


def test_sort_by_year_descending():
    pair = parse_collection([{"_id": "1", "name": "Dune", "year": 2021, "rating": 8},
                             {"_id": "2", "name": "Arrival", "year": 2016, "rating": 7.9}])
    state = ViewState().toggle_sort("year").toggle_sort("year")
    assert state.sort_order == "desc"
    assert names(visible_movies(pair, state)) == ["Dune", "Arrival"]


def test_same_key_twice_reverses(movies):
    asc = sort_movies(movies, "rating", "asc")
    assert sort_movies(asc, "rating", "desc") == list(reversed(asc))


def test_new_key_resets_to_ascending():
    state = ViewState(sort_key="name", sort_order="desc").toggle_sort("rating")
    assert (state.sort_key, state.sort_order) == ("rating", "asc")


def test_unknown_sort_key_rejected():
    with pytest.raises(ValueError):
        ViewState().toggle_sort("director")


def test_missing_numbers_sort_as_zero():
    parsed = parse_collection([{"_id": "1", "name": "B", "rating": 2}, {"_id": "2", "name": "A"}])
    assert names(sort_movies(parsed, "rating")) == ["A", "B"]


def test_name_sort_ignores_case():
    parsed = parse_collection([{"_id": "1", "name": "banana"}, {"_id": "2", "name": "Apple"}])
    assert names(sort_movies(parsed, "name")) == ["Apple", "banana"]


# ---------- summary ----------
def test_summary(movies):
    assert summarize(list(movies)) == Summary(average_rating=8.1, min_year=1995, max_year=2021)


def test_summary_of_nothing():
    assert summarize([]) is None


# ---------- cache ----------
def test_cache_remove_keeps_order(movies):
    cache = MovieCache().replace(movies)
    smaller = cache.remove("2")
    assert [m.id for m in smaller.movies] == ["1", "3"]
    assert len(cache) == 3


def test_cache_remove_unknown_is_noop(movies):
    cache = MovieCache(movies)
    assert cache.remove("nope") == cache


def test_cache_upsert_replaces_in_place(movies):
    cache = MovieCache(movies).upsert(CatalogMovie(id="2", name="Arrival (2016)"))
    assert [m.name for m in cache.movies] == ["Dune", "Arrival (2016)", "Heat"]


def test_cache_upsert_appends_new(movies):
    cache = MovieCache(movies).upsert(CatalogMovie(id="4", name="Sicario"))
    assert [m.id for m in cache.movies] == ["1", "2", "3", "4"]


# ---------- view ----------
def test_view_is_pure(movies):
    cache = MovieCache(movies)
    state = ViewState(search="a", sort_key="year", sort_order="desc")
    assert view(cache, state) == view(cache, state)


def test_view_combines_everything(movies):
    result = view(MovieCache(movies), ViewState(genre="Sci-Fi", sort_key="year"))
    assert result.genres == ("all", "Sci-Fi", "Crime")
    assert names(result.movies) == ["Arrival", "Dune"]
    assert result.total == 3
    assert result.summary == Summary(average_rating=8.0, min_year=2016, max_year=2021)


def test_accented_names_sort_with_their_base_letter():
    parsed = parse_collection([{"_id": "1", "name": "Zed"}, {"_id": "2", "name": "Élan"},
                               {"_id": "3", "name": "apple"}])
    assert names(sort_movies(parsed, "name")) == ["apple", "Élan", "Zed"]


def test_summary_rounds_halves_up():
    pair = parse_collection([{"_id": "1", "rating": 8.2, "year": 2000}, {"_id": "2", "rating": 8.3, "year": 2001}])
    assert summarize(list(pair)).average_rating == 8.3
