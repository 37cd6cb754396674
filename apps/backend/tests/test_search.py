"""
Tests for the search service: filters, facets, sorting, paging, nearby and lookup.
"""
from datetime import timedelta

import pytest

from app.search import MAX_PAGE, MAX_PAGE_SIZE, SearchService, parse_job_id, safe_int
from conftest import NOW, make_job
from core.errors import InvalidQueryParameter

PUNE = ("18.5204", "73.8567")


@pytest.fixture
def service(seeded_store):
    return SearchService(store=seeded_store)


def ids(result):
    return [job["id"] for job in result["jobs"]]


class TestSearch:
    @pytest.mark.asyncio
    async def test_defaults(self, service):
        result = await service.search()
        assert result["total"] == 5
        assert result["page"] == 1
        assert result["pageSize"] == 20
        # latest first
        assert ids(result) == [3, 2, 4, 1, 5]

    @pytest.mark.asyncio
    async def test_closing_soon_puts_missing_deadlines_last(self, service):
        result = await service.search(sort="closing_soon")
        assert ids(result) == [5, 4, 2, 1, 3]

    @pytest.mark.asyncio
    async def test_filters_are_exact(self, service):
        result = await service.search(state="Maharashtra")
        assert sorted(ids(result)) == [1, 4]

        assert (await service.search(state="maharashtra"))["total"] == 0
        assert (await service.search(state="Maha"))["total"] == 0

    @pytest.mark.asyncio
    async def test_filters_combine(self, service):
        result = await service.search(state="Maharashtra", category="Engineering", status="open")
        assert ids(result) == [1]

    @pytest.mark.asyncio
    async def test_blank_filters_ignored(self, service):
        assert (await service.search(state="  ", district=""))["total"] == 5

    @pytest.mark.asyncio
    async def test_facets_cover_filtered_set(self, service):
        all_facets = (await service.search())["facets"]
        assert all_facets["states"] == ["Delhi", "Karnataka", "Maharashtra", "National"]
        assert all_facets["statuses"] == ["open", "result_out", "upcoming"]

        facets = (await service.search(state="Maharashtra"))["facets"]
        assert facets == {
            "states": ["Maharashtra"],
            "categories": ["Administrative", "Engineering"],
            "statuses": ["open"],
        }

    @pytest.mark.asyncio
    async def test_keyword_match(self, service):
        assert ids(await service.search(q="nurse")) == [2]
        assert ids(await service.search(q="  Staff   Nurse ")) == [2]
        assert (await service.search(q="plumber"))["total"] == 0

    @pytest.mark.asyncio
    async def test_keyword_matches_organisation_and_state(self, service):
        assert ids(await service.search(q="reserve police")) == [3]
        assert ids(await service.search(q="karnataka")) == [5]

    @pytest.mark.asyncio
    async def test_fuzzy_match_on_typo(self, service):
        assert ids(await service.search(q="enginer")) == [1]

    @pytest.mark.asyncio
    async def test_relevance_prefers_title_hits(self, memory_store):
        memory_store.upsert(make_job(
            title="Lower Division Clerk", source_url="https://example.gov.in/ldc",
            description=None, published_at=NOW - timedelta(days=3),
        ))
        memory_store.upsert(make_job(
            title="Assistant", source_url="https://example.gov.in/asst",
            description="Clerk and typing duties", published_at=NOW,
        ))
        service = SearchService(store=memory_store)

        assert ids(await service.search(q="clerk", sort="latest")) == [2, 1]
        assert ids(await service.search(q="clerk", sort="relevance")) == [1, 2]

    @pytest.mark.asyncio
    async def test_relevance_without_query_falls_back_to_latest(self, service):
        assert ids(await service.search(sort="relevance")) == [3, 2, 4, 1, 5]

    @pytest.mark.asyncio
    async def test_paging(self, service):
        result = await service.search(page="2", page_size="2")
        assert ids(result) == [4, 1]
        assert result["total"] == 5
        assert (result["page"], result["pageSize"]) == (2, 2)

        beyond = await service.search(page="9", page_size="2")
        assert beyond["jobs"] == []
        assert beyond["total"] == 5

    @pytest.mark.asyncio
    async def test_paging_is_lenient(self, service):
        result = await service.search(page="abc", page_size="0")
        assert (result["page"], result["pageSize"]) == (1, 20)
        assert (await service.search(page_size="5000"))["pageSize"] == MAX_PAGE_SIZE

    @pytest.mark.asyncio
    async def test_huge_page_is_clamped(self, service):
        result = await service.search(page=str(10**30), page_size="100")
        assert result["page"] == MAX_PAGE
        assert result["jobs"] == []
        assert result["total"] == 5

    @pytest.mark.asyncio
    async def test_invalid_sort_and_status(self, service):
        with pytest.raises(InvalidQueryParameter) as exc:
            await service.search(sort="oldest")
        assert exc.value.param == "sort"

        with pytest.raises(InvalidQueryParameter) as exc:
            await service.search(status="archived")
        assert exc.value.param == "status"

    @pytest.mark.asyncio
    async def test_overlong_query_is_capped(self, service):
        result = await service.search(q="nurse " + "x" * 400)
        assert result["total"] == 0


class TestNearby:
    @pytest.mark.asyncio
    async def test_sorted_by_distance(self, service):
        result = await service.nearby(*PUNE, radius_km="200")
        assert ids(result) == [1, 4]
        distances = [job["distanceKm"] for job in result["jobs"]]
        assert distances == sorted(distances)
        assert distances[0] == 0.0
        assert 100 < distances[1] < 200
        assert result["radiusKm"] == 200.0

    @pytest.mark.asyncio
    async def test_all_results_within_radius(self, service):
        result = await service.nearby(*PUNE, radius_km="1000")
        assert all(job["distanceKm"] <= 1000 for job in result["jobs"])
        # Delhi is ~1170 km away and job 3 has no coordinates
        assert ids(result) == [1, 4]

    @pytest.mark.asyncio
    async def test_smaller_radius_is_subset(self, service):
        small = await service.nearby(*PUNE, radius_km="50")
        large = await service.nearby(*PUNE, radius_km="150")
        assert set(ids(small)) <= set(ids(large))
        assert ids(small) == [1]

    @pytest.mark.asyncio
    async def test_zero_radius_exact_point(self, service):
        result = await service.nearby(*PUNE, radius_km="0")
        assert ids(result) == [1]

    @pytest.mark.asyncio
    async def test_finds_job_at_widest_longitude_at_high_latitude(self, memory_store):
        memory_store.upsert(make_job(
            title="Lecturer", source_url="https://example.gov.in/lecturer",
            lat=61.2577, lon=43.1994,
        ))
        service = SearchService(store=memory_store)

        result = await service.nearby("60.0", "25.0", radius_km="1000")

        assert ids(result) == [1]
        assert 998 < result["jobs"][0]["distanceKm"] <= 1000

    @pytest.mark.asyncio
    async def test_only_open_jobs(self, service):
        # Job 5 in Bengaluru has status result_out
        result = await service.nearby("12.9716", "77.5946", radius_km="10")
        assert result["jobs"] == []

    @pytest.mark.asyncio
    async def test_limit(self, service):
        result = await service.nearby(*PUNE, radius_km="200", limit="1")
        assert ids(result) == [1]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lat,lon,radius,param", [
        (None, "73.8", "10", "lat"),
        ("18.5", "abc", "10", "lon"),
        ("18.5", "73.8", None, "radiusKm"),
        ("18.5", "73.8", "-1", "radiusKm"),
        ("18.5", "73.8", "5000", "radiusKm"),
    ])
    async def test_invalid_parameters(self, service, lat, lon, radius, param):
        with pytest.raises(InvalidQueryParameter) as exc:
            await service.nearby(lat, lon, radius_km=radius)
        assert exc.value.param == param


class TestGetJob:
    @pytest.mark.asyncio
    async def test_found(self, service):
        job = await service.get_job("2")
        assert job["title"] == "Staff Nurse"
        assert "search_vector" not in job

    @pytest.mark.asyncio
    async def test_missing(self, service):
        assert await service.get_job("999") is None

    @pytest.mark.parametrize("raw", ["abc", "0", "-1", "1.5", "", " ", "٣", str(2**31)])
    def test_malformed_ids(self, raw):
        with pytest.raises(InvalidQueryParameter):
            parse_job_id(raw)

    def test_parse_job_id(self):
        assert parse_job_id(" 42 ") == 42


def test_safe_int():
    assert safe_int("3", 1) == 3
    assert safe_int(None, 1) == 1
    assert safe_int("-2", 1) == 1
    assert safe_int("2.5", 1) == 1
