import asyncio

import aiohttp
import pytest
from aiohttp import web

from henflow_clients import (
    CredentialError,
    DispatchError,
    EstuaryClient,
    IpfsClient,
    PageFetchError,
    ResolutionError,
    request_json,
    strip_scheme,
)
from henflow_indexers import HicDexIndexer, TzKTIndexer, make_indexer

from fakes import serve


def test_strip_scheme():
    assert strip_scheme("ipfs://QmA") == "QmA"
    assert strip_scheme("proto://") == ""
    assert strip_scheme("QmA") == "QmA"
    assert strip_scheme("  ipfs://QmA\n") == "QmA"
    assert strip_scheme("://QmA") == "://QmA"


# =============================================================================
# ESTUARY
# =============================================================================

@pytest.mark.asyncio
async def test_estuary_lookup_variants():
    bodies = {
        "pinned": web.json_response([{"content": {"size": 321, "cid": "pinned"}}]),
        "null": web.Response(text="null\n"),
        "empty": web.json_response([]),
    }
    seen_auth = []

    async def by_cid(request):
        seen_auth.append(request.headers.get("Authorization"))
        cid = request.match_info["cid"]
        if cid not in bodies:
            raise web.HTTPNotFound()
        return bodies[cid]

    async with serve([web.get("/content/by-cid/{cid}", by_cid)]) as (base, session):
        estuary = EstuaryClient(session, "KEY", base_url=base)
        assert await estuary.lookup("pinned") == 321
        assert await estuary.lookup("null") is None
        assert await estuary.lookup("empty") is None
        assert await estuary.lookup("missing") is None

    assert set(seen_auth) == {"Bearer KEY"}


@pytest.mark.asyncio
async def test_estuary_credential_and_server_errors():
    async def by_cid(request):
        if request.match_info["cid"] == "denied":
            raise web.HTTPUnauthorized()
        raise web.HTTPServiceUnavailable()

    async with serve([web.get("/content/by-cid/{cid}", by_cid)]) as (base, session):
        estuary = EstuaryClient(session, "BAD", base_url=base)
        with pytest.raises(CredentialError) as denied:
            await estuary.lookup("denied")
        with pytest.raises(DispatchError) as unavailable:
            await estuary.lookup("other")

    assert denied.value.status_code == 401
    assert isinstance(denied.value, DispatchError)
    assert not denied.value.retryable
    assert unavailable.value.status_code == 503
    assert unavailable.value.retryable
    assert str(unavailable.value) == "HTTP 503: Service Unavailable"


@pytest.mark.asyncio
async def test_estuary_submit_posts_cid():
    received = []

    async def pins(request):
        received.append((request.headers.get("Authorization"), await request.json()))
        return web.json_response({"requestid": "1", "status": "queued"}, status=202)

    async with serve([web.post("/pinning/pins", pins)]) as (base, session):
        await EstuaryClient(session, "KEY", base_url=base).submit("QmA")

    assert received == [("Bearer KEY", {"cid": "QmA"})]


# =============================================================================
# IPFS
# =============================================================================

@pytest.mark.asyncio
async def test_ipfs_size_and_resolve():
    async def stat(request):
        assert request.query["arg"] == "/ipfs/QmArt"
        return web.json_response({"Hash": "QmArt", "CumulativeSize": 4096})

    async def metadata(request):
        if request.match_info["cid"] == "QmMeta":
            return web.json_response({"name": "x", "artifactUri": "ipfs://QmArt"})
        return web.json_response({"name": "no artifact"})

    routes = [web.post("/api/v0/object/stat", stat), web.get("/ipfs/{cid}", metadata)]
    async with serve(routes) as (base, session):
        ipfs = IpfsClient(session, gateway_url=base, daemon_url=base + "/")
        assert await ipfs.size("QmArt") == 4096
        assert await ipfs.resolve("QmMeta") == "ipfs://QmArt"
        with pytest.raises(ResolutionError):
            await ipfs.resolve("QmBroken")


@pytest.mark.asyncio
async def test_ipfs_gateway_non_json_is_resolution_error():
    async def metadata(request):
        return web.Response(text="<html>gateway</html>")

    async with serve([web.get("/ipfs/{cid}", metadata)]) as (base, session):
        with pytest.raises(ResolutionError):
            await IpfsClient(session, gateway_url=base).resolve("QmMeta")


@pytest.mark.asyncio
async def test_timeout_maps_to_408():
    async def slow(request):
        await asyncio.sleep(1)
        return web.json_response({})

    async with serve([web.get("/slow", slow)], timeout=0.05) as (base, session):
        with pytest.raises(ResolutionError) as exc:
            await request_json(session, "GET", f"{base}/slow", error_cls=ResolutionError)

    assert exc.value.status_code == 408
    assert exc.value.retryable


@pytest.mark.asyncio
async def test_connection_error_is_retryable():
    async with aiohttp.ClientSession() as session:
        with pytest.raises(DispatchError) as exc:
            await request_json(session, "GET", "http://127.0.0.1:1/", error_cls=DispatchError)

    assert str(exc.value).startswith("Connection Error:")
    assert exc.value.retryable


# =============================================================================
# INDEXERS
# =============================================================================

@pytest.mark.asyncio
async def test_hicdex_indexer():
    async def graphql(request):
        query = (await request.json())["query"]
        if "aggregate" in query:
            return web.json_response(
                {"data": {"hic_et_nunc_token_aggregate": {"aggregate": {"count": 3}}}}
            )
        if "by_pk" in query:
            return web.json_response(
                {"data": {"hic_et_nunc_token_by_pk": {"artifact_uri": "ipfs://QmB"}}}
            )
        assert "limit: 2, offset: 4" in query
        return web.json_response({"data": {"hic_et_nunc_token": [
            {"id": 152, "artifact_uri": "ipfs://QmA"},
            {"id": 153, "artifact_uri": None},
        ]}})

    async with serve([web.post("/v1/graphql", graphql)]) as (base, session):
        indexer = make_indexer("HicDex", session, hicdex_url=base)
        assert isinstance(indexer, HicDexIndexer)
        assert not indexer.needs_metadata_lookup
        assert await indexer.count() == 3
        page = await indexer.page(4, 2)
        assert [(r.token_id, r.artifact_reference) for r in page] == [(152, "ipfs://QmA"), (153, "")]
        record = await indexer.fetch_record(154)
        assert (record.token_id, record.artifact_reference) == (154, "ipfs://QmB")


@pytest.mark.asyncio
async def test_hicdex_graphql_errors_are_page_fetch_errors():
    async def graphql(request):
        return web.json_response({"errors": [{"message": "field not found"}]})

    async with serve([web.post("/v1/graphql", graphql)]) as (base, session):
        with pytest.raises(PageFetchError):
            await HicDexIndexer(session, base).page(0, 10)


@pytest.mark.asyncio
async def test_tzkt_indexer():
    pointer = "ipfs://QmMeta".encode().hex()

    async def summary(request):
        assert request.query["active"] == "true"
        return web.json_response({"ptr": 514, "activeKeys": 2})

    async def keys(request):
        assert request.query["limit"] == "10"
        assert request.query["offset"] == "0"
        return web.json_response([
            {"key": "1", "value": {"token_id": "1", "token_info": {"": pointer}}},
            {"key": "2", "value": {"token_id": "2", "token_info": {"": pointer}}},
        ])

    async def one_key(request):
        return web.json_response(
            {"key": request.match_info["key"], "value": {"token_info": {"": pointer}}}
        )

    routes = [
        web.get("/v1/bigmaps/514", summary),
        web.get("/v1/bigmaps/514/keys", keys),
        web.get("/v1/bigmaps/514/keys/{key}", one_key),
    ]
    async with serve(routes) as (base, session):
        indexer = make_indexer("TzKT", session, tzkt_url=base)
        assert isinstance(indexer, TzKTIndexer)
        assert indexer.needs_metadata_lookup
        assert await indexer.count() == 2
        page = await indexer.page(0, 10)
        assert [r.token_id for r in page] == [1, 2]
        assert page[0].artifact_reference == pointer
        assert (await indexer.fetch_record(9)).token_id == 9


@pytest.mark.asyncio
async def test_indexer_http_failure_is_page_fetch_error():
    async def broken(request):
        raise web.HTTPBadGateway()

    async with serve([web.get("/v1/bigmaps/514/keys", broken)]) as (base, session):
        with pytest.raises(PageFetchError) as exc:
            await TzKTIndexer(session, base).page(0, 10)

    assert exc.value.status_code == 502


def test_make_indexer_rejects_unknown():
    with pytest.raises(ValueError):
        make_indexer("Objkt", None)
