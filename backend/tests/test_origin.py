"""
BuFood API Gateway — Origin Validator Tests
=============================================

What we test:
    ✅ Absent origin, allow-listed origins and wildcard subdomains are allowed
    ✅ Bare suffix, look-alike hosts and garbage origins are denied
    ✅ The CORS regex agrees with the policy
    ✅ Denied origins get 403 cross-origin-denied with a request id
    ✅ Allowed origins get Access-Control-Allow-Origin echoed back
"""

import re

import pytest

from gateway.middleware.origin import OriginPolicy


ALLOWED = ["http://localhost:3000", "capacitor://localhost", "https://dellibup.onrender.com"]


class TestOriginPolicy:
    def setup_method(self):
        self.policy = OriginPolicy(ALLOWED, ["vercel.app"])

    def test_absent_origin_is_allowed(self):
        assert self.policy.is_allowed(None)
        assert self.policy.is_allowed("")

    @pytest.mark.parametrize("origin", ALLOWED)
    def test_allow_list_exact_match(self, origin):
        assert self.policy.is_allowed(origin)

    @pytest.mark.parametrize(
        "origin",
        [
            "https://bufood.vercel.app",
            "https://feature-branch-123.bufood.vercel.app",
            "http://preview.vercel.app:8080",
            "https://Shop.Vercel.App",
        ],
    )
    def test_wildcard_subdomains_are_allowed(self, origin):
        assert self.policy.is_allowed(origin)

    @pytest.mark.parametrize(
        "origin",
        [
            "https://vercel.app",
            "https://evilvercel.app",
            "https://vercel.app.evil.com",
            "http://localhost:3001",
            "https://dellibup.onrender.com.evil.com",
            "https://u@shop.vercel.app",
            "https://u:p@shop.vercel.app",
            "https://shop.vercel.app/path",
            "https://shop.vercel.app?x=1",
            "https://shop.vercel.app#frag",
            "https://shop_1.vercel.app",
            "not a url",
            "null",
        ],
    )
    def test_other_origins_are_denied(self, origin):
        assert not self.policy.is_allowed(origin)

    def test_no_suffixes_means_no_regex(self):
        assert OriginPolicy(ALLOWED).origin_regex() is None

    @pytest.mark.parametrize(
        "origin,expected",
        [
            ("https://bufood.vercel.app", True),
            ("https://a.b.vercel.app:3000", True),
            ("https://vercel.app", False),
            ("https://evilvercel.app", False),
            ("https://u@shop.vercel.app", False),
            ("https://shop.vercel.app/menu", False),
            ("http://shop.vercel.app:8080", True),
        ],
    )
    def test_cors_regex_matches_policy(self, origin, expected):
        regex = self.policy.origin_regex()
        assert bool(re.fullmatch(regex, origin)) is expected
        assert self.policy.is_allowed(origin) is expected

    def test_from_settings_normalizes_suffixes(self, make_settings):
        settings = make_settings(cors_origins="https://a.example", cors_origin_suffixes=".Vercel.app, netlify.app")
        policy = OriginPolicy.from_settings(settings)
        assert policy.is_allowed("https://x.netlify.app")
        assert policy.is_allowed("https://x.vercel.app")
        assert policy.is_allowed("https://a.example")


class TestOriginGuard:
    @pytest.mark.asyncio
    async def test_denied_origin_gets_403(self, make_client):
        async with make_client() as (client, _):
            response = await client.get("/api/products", headers={"Origin": "https://evil.example"})

        assert response.status_code == 403
        body = response.json()
        assert body["error"] == "cross-origin-denied"
        assert body["requestId"]
        assert body["requestId"] == response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_denied_origin_never_reaches_handler(self, make_client, handler_calls):
        async with make_client() as (client, _):
            await client.get("/api/products", headers={"Origin": "https://evil.example"})
        assert handler_calls["products"] == 0

    @pytest.mark.asyncio
    async def test_allowed_origin_gets_cors_headers(self, make_client):
        async with make_client() as (client, _):
            response = await client.get("/", headers={"Origin": "https://shop.vercel.app"})

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "https://shop.vercel.app"
        assert response.headers["access-control-allow-credentials"] == "true"

    @pytest.mark.asyncio
    async def test_preflight_for_allowed_origin(self, make_client):
        async with make_client() as (client, _):
            response = await client.options(
                "/api/products",
                headers={
                    "Origin": "http://localhost:5173",
                    "Access-Control-Request-Method": "POST",
                },
            )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:5173"

    @pytest.mark.asyncio
    async def test_no_origin_is_served(self, make_client):
        async with make_client() as (client, _):
            response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_origin_with_userinfo_is_denied(self, make_client, handler_calls):
        async with make_client() as (client, _):
            response = await client.get("/api/products", headers={"Origin": "https://u@shop.vercel.app"})

        assert response.status_code == 403
        assert "access-control-allow-origin" not in response.headers
        assert handler_calls["products"] == 0
