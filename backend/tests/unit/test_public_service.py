from datetime import datetime, timezone

import pytest

from manuscripta.core.errors import NotFoundError, ValidationError


def _published(make_submission, title, *, doi, published_at, **extra):
    return make_submission("published", title=title, doi=doi, published_at=published_at, **extra)


@pytest.fixture
def catalog(fake_db, make_submission, actors):
    """两篇已发表（同一卷期）+ 一篇已接收未发表 + 一个草稿卷期"""
    a = _published(
        make_submission,
        "Sparse Graph Shortest Paths",
        doi="10.5555/manuscripta.2026.aaaa1111",
        published_at="2026-03-01T00:00:00+00:00",
        keywords=["graphs", "algorithms"],
        co_authors=[
            {"name": "Bo Second", "email": "bo@example.com", "affiliation": "Uni B", "order": 2},
            {"name": "Al First", "email": "al@example.com", "affiliation": "Uni A", "order": 1},
        ],
    )
    b = _published(
        make_submission,
        "Quantum Annealing Heuristics",
        doi="10.5555/manuscripta.2025.bbbb2222",
        published_at="2025-11-20T00:00:00+00:00",
        keywords=["quantum"],
        abstract="Annealing schedules for combinatorial optimisation on noisy hardware.",
    )
    pending = make_submission("accepted", title="Graph Coloring Bounds", doi=None)
    issue, draft = fake_db.seed(
        "issues",
        {"volume": 3, "number": 1, "year": 2026, "title": "Spring", "status": "published", "is_current": True,
         "published_at": "2026-03-02T00:00:00+00:00"},
        {"volume": 3, "number": 2, "year": 2026, "title": "Summer", "status": "draft", "is_current": False},
    )
    fake_db.seed(
        "issue_articles",
        {"issue_id": issue["id"], "submission_id": b["id"], "position": 2, "page_start": 11, "page_end": 20},
        {"issue_id": issue["id"], "submission_id": a["id"], "position": 1, "page_start": 1, "page_end": 10},
        {"issue_id": draft["id"], "submission_id": pending["id"], "position": 1, "page_start": 1, "page_end": 5},
    )
    return {"a": a, "b": b, "pending": pending, "issue": issue, "draft": draft}


def test_article_detail_has_doi_authors_and_issue(public_service, catalog):
    article = public_service.get_article(catalog["a"]["id"])

    assert article["doi"] == "10.5555/manuscripta.2026.aaaa1111"
    assert article["doi_url"] == "https://doi.org/10.5555/manuscripta.2026.aaaa1111"
    assert [a["name"] for a in article["authors"]] == ["Ada Author", "Al First", "Bo Second"]
    assert all("email" not in a for a in article["authors"])
    assert article["issue"]["volume"] == 3
    assert article["issue"]["page_start"] == 1
    assert "manuscript_files" not in article
    assert "status" not in article


def test_unpublished_articles_are_not_found(public_service, catalog):
    with pytest.raises(NotFoundError):
        public_service.get_article(catalog["pending"]["id"])
    with pytest.raises(NotFoundError):
        public_service.get_article("no-such-id")


def test_article_by_doi(public_service, catalog):
    article = public_service.get_article_by_doi("10.5555/manuscripta.2025.bbbb2222")
    assert article["id"] == catalog["b"]["id"]
    with pytest.raises(ValidationError):
        public_service.get_article_by_doi("  ")


def test_search_matches_title_case_insensitively(public_service, catalog):
    out = public_service.search("GRAPH")
    # 已接收未发表的 "Graph Coloring Bounds" 不出现
    assert [a["id"] for a in out["data"]] == [catalog["a"]["id"]]
    assert out["total"] == 1


def test_search_matches_keywords_and_abstract(public_service, catalog):
    by_keyword = public_service.search("quantum")
    assert [a["id"] for a in by_keyword["data"]] == [catalog["b"]["id"]]

    by_abstract = public_service.search("noisy hardware")
    assert [a["id"] for a in by_abstract["data"]] == [catalog["b"]["id"]]


def test_search_without_query_lists_newest_first_and_filters_year(public_service, catalog):
    everything = public_service.search(None, limit=1)
    assert everything["total"] == 2
    assert everything["data"][0]["id"] == catalog["a"]["id"]

    older = public_service.search(None, year=2025)
    assert [a["id"] for a in older["data"]] == [catalog["b"]["id"]]


def test_archive_lists_public_issues_with_table_of_contents(public_service, catalog):
    out = public_service.archive()

    assert out["total"] == 1
    (issue,) = out["data"]
    assert issue["id"] == catalog["issue"]["id"]
    assert issue["article_count"] == 2
    assert [a["id"] for a in issue["articles"]] == [catalog["a"]["id"], catalog["b"]["id"]]
    assert issue["articles"][1]["page_start"] == 11


def test_journal_stats(public_service, catalog):
    stats = public_service.journal_stats(now=datetime(2026, 10, 18, tzinfo=timezone.utc))

    assert stats["total_articles"] == 2
    assert stats["total_issues"] == 1
    assert stats["current_year_articles"] == 1
    assert [a["id"] for a in stats["recent_articles"]] == [catalog["a"]["id"], catalog["b"]["id"]]
