"""Tests for section matching and lexical search."""

import pytest

from markprompt_sync.ingestion.pipeline import IngestionPipeline
from markprompt_sync.models.content import ContentRecord
from markprompt_sync.retrieval import SectionRetriever
from markprompt_sync.storage import QueryStatRepository

from conftest import create_source, make_settings, seed_team

DOCS = {
    "/deploy.md": "# Deploy guide\n\nHow to deploy the app to production servers.",
    "/billing.md": "# Billing\n\nBilling questions and invoices for your account.",
    "/mixed.md": "# Deploy billing\n\nDeploy with billing enabled for all the teams.",
    "/short.md": "# Deploy\n\nDeploy it.",
    "/pct.md": "# Progress\n\nThe migration is 100% done for everyone.",
    "/underscore.md": "# Names\n\nUse snake_case for every config key.",
}


async def ingest(store, embedder, settings, source, docs: dict[str, str]) -> None:
    pipeline = IngestionPipeline(store, embedder, settings)
    await pipeline.run(source, [ContentRecord(path=p, content=c) for p, c in docs.items()])


@pytest.fixture
async def retriever(store, embedder, settings, source) -> SectionRetriever:
    await ingest(store, embedder, settings, source, DOCS)
    return SectionRetriever(store, embedder, settings)


async def test_matches_above_threshold_by_similarity(retriever, project_id):
    matches = await retriever.match_sections(project_id, "deploy")

    assert [m.path for m in matches] == ["/deploy.md", "/mixed.md"]
    assert matches[0].similarity == pytest.approx(1.0)
    assert matches[1].similarity == pytest.approx(2**-0.5, rel=1e-5)
    assert matches[0].title == "Deploy guide"
    assert matches[0].source_type == "website"
    assert matches[0].meta["lead_heading"]["value"] == "Deploy guide"


async def test_short_sections_are_never_matched(retriever, project_id):
    matches = await retriever.match_sections(project_id, "deploy", threshold=0.0)

    assert "/short.md" not in {m.path for m in matches}


async def test_threshold_is_exclusive(retriever, project_id):
    assert await retriever.match_sections(project_id, "deploy", threshold=1.0) == []


async def test_count_limits_matches(retriever, project_id):
    matches = await retriever.match_sections(project_id, "deploy", count=1)

    assert [m.path for m in matches] == ["/deploy.md"]


async def test_count_is_capped(tmp_path, store, embedder, retriever, project_id):
    capped = SectionRetriever(store, embedder, make_settings(tmp_path, sections_match_count_max=1))

    matches = await capped.match_sections(project_id, "deploy", count=10)

    assert len(matches) == 1


async def test_ties_are_ordered_by_path_then_section(store, embedder, settings, source, project_id):
    await ingest(
        store,
        embedder,
        settings,
        source,
        {
            "/z.md": "# Auth\n\nAuth tokens are rotated daily here.",
            "/a.md": (
                "# Auth\n\nAuth tokens are rotated daily here.\n\n"
                "# Auth again\n\nAuth tokens also expire after a week."
            ),
        },
    )
    retriever = SectionRetriever(store, embedder, settings)

    matches = await retriever.match_sections(project_id, "auth")

    assert [(m.path, m.section_index) for m in matches] == [("/a.md", 0), ("/a.md", 1), ("/z.md", 0)]


async def test_empty_prompt_or_zero_count(retriever, project_id, embedder):
    calls = len(embedder.calls)

    assert await retriever.match_sections(project_id, "   ") == []
    assert await retriever.match_sections(project_id, "deploy", count=0) == []
    assert len(embedder.calls) == calls


async def test_search_is_case_insensitive(retriever, project_id):
    hits = await retriever.search(project_id, "DEPLOY")

    assert [hit.path for hit in hits] == ["/deploy.md", "/mixed.md", "/short.md"]
    assert hits[0].title == "Deploy guide"


async def test_search_treats_wildcards_literally(retriever, project_id):
    assert [hit.path for hit in await retriever.search(project_id, "%")] == ["/pct.md"]
    assert [hit.path for hit in await retriever.search(project_id, "_")] == ["/underscore.md"]


async def test_search_limit_and_empty_query(retriever, project_id):
    assert len(await retriever.search(project_id, "deploy", limit=2)) == 2
    assert await retriever.search(project_id, "  ") == []
    assert await retriever.search(project_id, "deploy", limit=0) == []


async def test_search_is_scoped_to_the_project(store, embedder, settings, retriever):
    other_project = await seed_team(store, team_id="team-2", project_id="project-2")
    other = await create_source(store, source_id="source-2", project_id=other_project)
    await ingest(store, embedder, settings, other, {"/other.md": "# Deploy\n\nDeploy elsewhere entirely."})

    hits = await retriever.search(other_project, "deploy")

    assert [hit.path for hit in hits] == ["/other.md"]


async def test_top_references(store, embedder, settings, project_id):
    async with store.session() as session, session.begin():
        stats = QueryStatRepository(session)
        await stats.record(project_id, "how to deploy", cited_paths=["/deploy.md", "/mixed.md"])
        await stats.record(project_id, "deploy again", cited_paths=["/deploy.md"])
        await stats.record(project_id, "billing?", cited_paths=["/billing.md"])

    retriever = SectionRetriever(store, embedder, settings)
    references = await retriever.top_references(project_id, limit=2)

    assert [(r.path, r.count) for r in references] == [("/deploy.md", 2), ("/billing.md", 1)]
