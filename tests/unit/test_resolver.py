"""Tests for the round-robin resolver and its scheme registry."""

from __future__ import annotations

import json
import random

from nodectl.client import resolver
from nodectl.client.resolver import (
    ROUND_ROBIN_SERVICE_CONFIG,
    RoundRobinResolver,
    get_scheme,
    lookup,
    parse_target,
    register,
)


class TestParseTarget:
    def test_list(self):
        assert parse_target("nodectl:///a:1,b:2") == ["a:1", "b:2"]

    def test_skips_empty(self):
        assert parse_target("nodectl:///a:1,,") == ["a:1"]

    def test_without_scheme(self):
        assert parse_target("a:1,b:2") == ["a:1", "b:2"]


class TestRoundRobinResolver:
    def test_resolves_every_address(self):
        state = RoundRobinResolver(random.Random(1)).resolve("nodectl:///a:1,[::1]:2,c:3")
        assert sorted(a.addr for a in state.addresses) == ["[::1]:2", "a:1", "c:3"]

    def test_server_name_is_bare_host(self):
        state = RoundRobinResolver().resolve("nodectl:///example.com:50000,[::1]:2")
        names = {a.addr: a.server_name for a in state.addresses}
        assert names == {"example.com:50000": "example.com", "[::1]:2": "::1"}

    def test_service_config_selects_round_robin(self):
        state = RoundRobinResolver().resolve("nodectl:///a:1")
        assert state.service_config == ROUND_ROBIN_SERVICE_CONFIG
        assert json.loads(state.service_config) == {"loadBalancingConfig": [{"round_robin": {}}]}

    def test_shuffle_is_seeded(self):
        target = "nodectl:///" + ",".join(f"h{i}:1" for i in range(10))
        a = RoundRobinResolver(random.Random(7)).resolve(target)
        b = RoundRobinResolver(random.Random(7)).resolve(target)
        assert a.addresses == b.addresses


class TestRegistry:
    def test_builtin_scheme_registered(self):
        assert isinstance(lookup("nodectl:///a:1,b:2"), RoundRobinResolver)

    def test_unknown_scheme(self):
        assert lookup("dns:///a:1") is None
        assert lookup("a:1") is None

    def test_get_scheme(self):
        assert get_scheme("nodectl:///x") == "nodectl"
        assert get_scheme("x:1") == ""

    def test_register_idempotent(self):
        register("nodectl", RoundRobinResolver)
        register("nodectl", RoundRobinResolver)
        assert resolver._registry["nodectl"] is RoundRobinResolver

    def test_register_custom(self):
        class Custom(RoundRobinResolver):
            pass

        register("custom-test", Custom)
        try:
            assert isinstance(lookup("custom-test:///a:1"), Custom)
        finally:
            resolver._registry.pop("custom-test", None)
