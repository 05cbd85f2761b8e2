import pytest

from queries import (
    DEFAULT_LIMIT,
    MovieQuery,
    build_movie_query,
    parse_sort,
    parse_watched,
    shape_overview,
    shape_stats,
    stats_pipeline,
    top_genres_pipeline,
    recent_years_pipeline,
)


def test_owner_clause_always_present():
    q = build_movie_query("u1")
    assert q.to_filter() == {"added_by": "u1"}


def test_optional_clauses_are_conjunctive():
    q = build_movie_query("u1", genre="Drama", year=1999, search="matrix", watched="true")
    assert q.to_filter() == {
        "added_by": "u1",
        "genres": "Drama",
        "year": 1999,
        "watched": True,
        "$text": {"$search": "matrix"},
    }


@pytest.mark.parametrize("raw,expected", [("true", True), ("false", False), ("yes", False), (None, None)])
def test_parse_watched(raw, expected):
    assert parse_watched(raw) is expected


def test_blank_search_is_ignored():
    assert "$text" not in build_movie_query("u1", search="   ").to_filter()


def test_pagination_window():
    q = build_movie_query("u1", page=2, limit=10)
    assert q.skip == 10
    assert q.pagination(15) == {"page": 2, "limit": 10, "total": 15, "pages": 2}


@pytest.mark.parametrize("page,limit,exp_page,exp_limit", [
    (0, 10, 1, 10),
    (-3, 5, 1, 5),
    (1, 0, 1, DEFAULT_LIMIT),
    (1, 500, 1, DEFAULT_LIMIT),
    ("x", "y", 1, DEFAULT_LIMIT),
])
def test_pagination_clamps(page, limit, exp_page, exp_limit):
    q = build_movie_query("u1", page=page, limit=limit)
    assert (q.page, q.limit) == (exp_page, exp_limit)


def test_page_count_zero_total():
    assert build_movie_query("u1").pagination(0)["pages"] == 0


def test_default_sort_is_newest_first():
    assert build_movie_query("u1").sort == [("created_at", -1)]


def test_parse_sort_multiple_and_aliases():
    assert parse_sort("year,-personalRating title") == [("year", 1), ("personal_rating", -1), ("title", 1)]


def test_parse_sort_unknown_falls_back_to_default():
    assert parse_sort("-password_hash") == [("created_at", -1)]


def test_matches_owner_and_text_terms():
    q = MovieQuery(owner_id="u1", search="dune spice")
    assert q.matches({"added_by": "u1", "title": "Dune", "description": "", "director": ""})
    assert not q.matches({"added_by": "u2", "title": "Dune"})
    assert not q.matches({"added_by": "u1", "title": "Arrival", "description": "aliens"})


def test_matches_genre_and_watched():
    q = MovieQuery(owner_id="u1", genre="Drama", watched=False)
    assert q.matches({"added_by": "u1", "genres": ["Drama"], "watched": False})
    assert not q.matches({"added_by": "u1", "genres": ["Drama"], "watched": True})
    assert not q.matches({"added_by": "u1", "genres": ["Comedy"]})


def test_stats_pipeline_starts_with_match():
    pipeline = stats_pipeline({"added_by": "u1"})
    assert pipeline[0] == {"$match": {"added_by": "u1"}}
    assert pipeline[1]["$group"]["total_movies"] == {"$sum": 1}


def test_overview_pipelines_limit_to_five():
    assert top_genres_pipeline("u1")[-1] == {"$limit": 5}
    assert recent_years_pipeline("u1")[-2] == {"$sort": {"_id": -1}}


def test_empty_aggregations_default_to_zero():
    assert shape_stats([]) == {"total_movies": 0, "avg_rating": 0, "total_runtime": 0, "genres": []}
    assert shape_overview([]) == {"total_movies": 0, "avg_rating": 0, "total_runtime": 0, "watched_count": 0}


def test_shape_stats_rounds_and_sorts():
    stats = shape_stats([{"total_movies": 3, "avg_rating": 7.66666, "total_runtime": 300, "genres": ["War", "Drama"]}])
    assert stats == {"total_movies": 3, "avg_rating": 7.67, "total_runtime": 300, "genres": ["Drama", "War"]}
