import asyncio

import pytest
from aiohttp import web

from record_store import (
    InMemoryRecordStore,
    RecordStore,
    RecordStoreError,
    RestRecordStore,
    build_query_params,
    ilike_to_regex,
)

from fixtures import serving


@pytest.fixture
def donors_store():
    return InMemoryRecordStore({
        "donors": [
            {"id": "1", "full_name": "Ana", "city": "Paris", "blood_group": "O-", "age": 30, "is_available": True},
            {"id": "2", "full_name": "Ben", "city": "Lyon", "blood_group": "A+", "age": 45, "is_available": False},
            {"id": "3", "full_name": "Chloe", "city": "paris 11e", "blood_group": "AB-", "age": None, "is_available": True},
        ]
    })


@pytest.mark.asyncio
async def test_eq_and_in_filters_are_combined(donors_store):
    rows = await (donors_store.select("donors")
                  .eq("is_available", True)
                  .in_("blood_group", ["O-", "A+"])
                  .execute())

    assert [r["id"] for r in rows] == ["1"]


@pytest.mark.asyncio
async def test_ilike_is_case_insensitive_substring(donors_store):
    rows = await donors_store.select("donors").ilike("city", "%PARIS%").execute()

    assert [r["id"] for r in rows] == ["1", "3"]


@pytest.mark.asyncio
async def test_comparison_filters_skip_missing_values(donors_store):
    rows = await donors_store.select("donors").filter("age", "gte", 30).execute()

    assert [r["id"] for r in rows] == ["1", "2"]


@pytest.mark.asyncio
async def test_order_desc_puts_missing_values_last_and_limits(donors_store):
    rows = await donors_store.select("donors").order("age", desc=True).execute()
    assert [r["id"] for r in rows] == ["2", "1", "3"]

    rows = await donors_store.select("donors").order("age").limit(2).execute()
    assert [r["id"] for r in rows] == ["1", "2"]


@pytest.mark.asyncio
async def test_results_are_copies(donors_store):
    rows = await donors_store.select("donors").execute()
    rows[0]["full_name"] = "Changed"

    again = await donors_store.select("donors").eq("id", "1").execute()
    assert again[0]["full_name"] == "Ana"


@pytest.mark.asyncio
async def test_unknown_table_reads_empty():
    store = InMemoryRecordStore()

    assert await store.select("volunteers").execute() == []


@pytest.mark.asyncio
async def test_insert_assigns_id_and_created_at():
    store = InMemoryRecordStore()

    inserted = await store.insert("volunteers", [{"name": "Sam"}])

    assert inserted[0]["id"]
    assert inserted[0]["created_at"]
    rows = await store.select("volunteers").execute()
    assert rows == inserted


def test_unknown_operator_is_rejected():
    with pytest.raises(ValueError):
        RecordStore().select("donors").filter("city", "like", "Paris")


def test_ilike_pattern_escapes_regex_characters():
    pattern = ilike_to_regex("%St. (Louis)%")

    assert pattern.match("Hopital st. (louis) nord")
    assert not pattern.match("Hopital StX (Louis)")
    assert ilike_to_regex("A_").match("ab")
    assert not ilike_to_regex("A_").match("abc")


def test_build_query_params_encodes_postgrest_filters():
    query = (RecordStore().select("donors")
             .eq("is_available", True)
             .in_("blood_group", ["AB-", "O-"])
             .ilike("city", "%Paris%")
             .eq("last_donation_date", None)
             .order("created_at", desc=True)
             .limit(3))

    assert build_query_params(query) == [
        ("select", "*"),
        ("is_available", "eq.true"),
        ("blood_group", 'in.("AB-","O-")'),
        ("city", "ilike.%Paris%"),
        ("last_donation_date", "is.null"),
        ("order", "created_at.desc"),
        ("limit", "3"),
    ]


def test_rest_store_requires_url():
    with pytest.raises(ValueError):
        RestRecordStore("", "key")

    store = RestRecordStore("https://example.supabase.co/", "key")
    assert store.base_url == "https://example.supabase.co/rest/v1"


@pytest.mark.asyncio
async def test_rest_query_sends_filters_and_returns_rows():
    seen = {}

    async def donors(request):
        seen["query"] = list(request.query.items())
        seen["apikey"] = request.headers.get("apikey")
        seen["authorization"] = request.headers.get("Authorization")
        return web.json_response([{"id": "1", "full_name": "Ana"}])

    async with serving([web.get("/rest/v1/donors", donors)]) as url:
        store = RestRecordStore(url, "secret")
        rows = await store.select("donors").eq("is_available", True).in_("blood_group", ["O-"]).execute()

    assert rows == [{"id": "1", "full_name": "Ana"}]
    assert seen["query"] == [("select", "*"), ("is_available", "eq.true"), ("blood_group", 'in.("O-")')]
    assert seen["apikey"] == "secret"
    assert seen["authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_rest_insert_returns_stored_representation():
    seen = {}

    async def volunteers(request):
        seen["prefer"] = request.headers.get("Prefer")
        rows = await request.json()
        return web.json_response([{**row, "id": "v-1"} for row in rows], status=201)

    async with serving([web.post("/rest/v1/volunteers", volunteers)]) as url:
        inserted = await RestRecordStore(url, "secret").insert("volunteers", [{"name": "Sam"}])

    assert inserted == [{"name": "Sam", "id": "v-1"}]
    assert seen["prefer"] == "return=representation"


@pytest.mark.asyncio
async def test_rest_http_error_raises_record_store_error():
    async def broken(request):
        return web.json_response({"message": "permission denied"}, status=401)

    routes = [web.get("/rest/v1/donors", broken), web.post("/rest/v1/donors", broken)]
    async with serving(routes) as url:
        store = RestRecordStore(url, "secret")
        with pytest.raises(RecordStoreError, match="HTTP 401"):
            await store.select("donors").execute()
        with pytest.raises(RecordStoreError, match="HTTP 401"):
            await store.insert("donors", [{"full_name": "Ana"}])


@pytest.mark.asyncio
async def test_rest_non_json_body_raises_record_store_error():
    async def html_page(request):
        return web.Response(text="<html>maintenance</html>", content_type="text/html")

    async with serving([web.get("/rest/v1/donors", html_page)]) as url:
        with pytest.raises(RecordStoreError):
            await RestRecordStore(url, "secret").select("donors").execute()


@pytest.mark.asyncio
async def test_rest_timeout_raises_record_store_error():
    async def slow(request):
        await asyncio.sleep(1)
        return web.json_response([])

    async with serving([web.get("/rest/v1/donors", slow), web.post("/rest/v1/donors", slow)]) as url:
        store = RestRecordStore(url, "secret", timeout_seconds=0.2)
        with pytest.raises(RecordStoreError):
            await store.select("donors").execute()
        with pytest.raises(RecordStoreError):
            await store.insert("donors", [{"full_name": "Ana"}])


@pytest.mark.asyncio
async def test_unreachable_store_raises_record_store_error():
    async with serving([]) as url:
        pass

    with pytest.raises(RecordStoreError):
        await RestRecordStore(url, "secret", timeout_seconds=2).select("donors").execute()
