"""Tests for the AllowList and BlockList domain registries."""

import unittest

import requests

from politecrawl.delay import RequestDelay
from politecrawl.domain import AllowList, BlockList, DomainConfig, host_of
from politecrawl.errors import (
    DisallowedRequest,
    DisallowReason,
    FailedToBuildRequest,
    InvalidRequest,
    ReachedMaxDepth,
)


def _get(url):
    return requests.Request("GET", url)


class TestHostOf(unittest.TestCase):
    """Verify host extraction used for routing."""

    def test_lowercases_and_drops_port(self):
        self.assertEqual(host_of("https://Example.COM:8443/path"), "example.com")

    def test_non_http_has_no_host(self):
        self.assertIsNone(host_of("mailto:someone@example.com"))


class TestAllowList(unittest.TestCase):
    """Verify allow-list routing, rejection and capacity split."""

    def test_routes_registered_domain(self):
        """A request to an allowed domain lands in that domain's queue."""
        registry = AllowList()
        registry.register("example.com")
        self.assertIsNone(registry.add_request(_get("https://example.com/a"), state="s"))
        domain = registry.lookup_mut("example.com")
        self.assertEqual(len(domain.queue), 1)
        self.assertEqual(domain.queue.poll_next().state, "s")

    def test_unknown_domain_rejected_by_user_config(self):
        """Unregistered hosts are rejected with DisallowReason.USER_CONFIG."""
        registry = AllowList()
        registry.register("example.com")
        err = registry.add_request(_get("https://other.test/"), state={"page": 1})
        self.assertIsInstance(err, DisallowedRequest)
        self.assertEqual(err.reason, DisallowReason.USER_CONFIG)
        self.assertEqual(err.state, {"page": 1})
        self.assertTrue(registry.is_empty())

    def test_malformed_url_fails_to_build(self):
        """A URL without a scheme cannot be prepared and keeps state and depth."""
        registry = AllowList()
        registry.register("example.com")
        err = registry.add_request(_get("not a url"), state="detail", depth=3)
        self.assertIsInstance(err, FailedToBuildRequest)
        self.assertEqual(err.state, "detail")
        self.assertEqual(err.depth, 3)

    def test_non_http_request_is_invalid(self):
        """A request that prepares but has no HTTP host is an InvalidRequest."""
        registry = AllowList()
        err = registry.add_request(_get("mailto:someone@example.com"), state=7)
        self.assertIsInstance(err, InvalidRequest)
        self.assertEqual(err.state, 7)

    def test_depth_over_limit_rejected_early(self):
        """Requests deeper than max_depth are never queued."""
        registry = AllowList()
        registry.register("example.com", DomainConfig(max_depth=1))
        self.assertIsNone(registry.add_request(_get("https://example.com/1"), depth=1))
        err = registry.add_request(_get("https://example.com/2"), state="deep", depth=2)
        self.assertIsInstance(err, ReachedMaxDepth)
        self.assertEqual(err.depth, 2)
        self.assertEqual(err.state, "deep")
        self.assertEqual(registry.queued(), 1)

    def test_unregister_returns_queued_requests(self):
        """Removing a domain hands back whatever was still queued."""
        registry = AllowList()
        registry.register("example.com")
        registry.add_request(_get("https://example.com/a"), state="a")
        registry.add_request(_get("https://example.com/b"), state="b")
        leftover = registry.unregister("example.com")
        self.assertEqual([q.state for q in leftover], ["a", "b"])
        self.assertNotIn("example.com", registry)
        self.assertEqual(registry.unregister("example.com"), [])

    def test_register_replaces_config_and_keeps_queue(self):
        """Re-registering swaps the config but keeps queued items."""
        registry = AllowList()
        registry.register("example.com", DomainConfig(delay=RequestDelay.fixed(1.0)))
        registry.add_request(_get("https://example.com/a"))
        registry.register("example.com", DomainConfig(max_depth=0))
        domain = registry.lookup_mut("example.com")
        self.assertEqual(len(domain.queue), 1)
        self.assertIsNone(domain.queue.delay)
        self.assertEqual(domain.config.max_depth, 0)

    def test_global_cap_split_evenly(self):
        """Domains without an explicit cap share the global cap."""
        registry = AllowList(max_concurrent_requests=10)
        registry.register("a.test")
        registry.register("b.test")
        self.assertEqual(registry.lookup_mut("a.test").cap, 5)
        self.assertEqual(registry.lookup_mut("b.test").cap, 5)

    def test_cap_rebalanced_on_membership_change(self):
        """Adding and removing domains recomputes the shared cap."""
        registry = AllowList(max_concurrent_requests=9)
        registry.register("a.test")
        self.assertEqual(registry.lookup_mut("a.test").cap, 9)
        registry.register("b.test")
        registry.register("c.test")
        self.assertEqual(registry.lookup_mut("a.test").cap, 3)
        registry.unregister("c.test")
        self.assertEqual(registry.lookup_mut("a.test").cap, 4)

    def test_explicit_cap_not_rebalanced(self):
        """An explicit max_requests is kept and excluded from the split."""
        registry = AllowList(max_concurrent_requests=10)
        registry.register("a.test", DomainConfig(max_requests=2))
        registry.register("b.test")
        self.assertEqual(registry.lookup_mut("a.test").cap, 2)
        self.assertEqual(registry.lookup_mut("b.test").cap, 10)

    def test_share_never_below_one(self):
        """More domains than global slots still leaves each domain one slot."""
        registry = AllowList(max_concurrent_requests=2)
        for name in ("a.test", "b.test", "c.test"):
            registry.register(name)
        self.assertEqual(registry.lookup_mut("c.test").cap, 1)

    def test_lookup_returns_detached_copy(self):
        """Changing the result of lookup() does not affect the registry."""
        registry = AllowList()
        registry.register("example.com", DomainConfig(max_depth=2))
        copy = registry.lookup("example.com")
        copy.max_depth = 99
        self.assertEqual(registry.lookup("example.com").max_depth, 2)
        self.assertIsNone(registry.lookup("missing.test"))

    def test_lookup_mut_changes_live_config(self):
        """Changing the live entry affects subsequent routing."""
        registry = AllowList()
        registry.register("example.com")
        registry.lookup_mut("example.com").config.max_depth = 0
        err = registry.add_request(_get("https://example.com/"), depth=1)
        self.assertIsInstance(err, ReachedMaxDepth)

    def test_domain_delay_can_be_swapped_live(self):
        """set_delay and remove_delay update both config and queue."""
        registry = AllowList()
        registry.register("example.com")
        domain = registry.lookup_mut("example.com")
        self.assertIsNone(domain.set_delay(RequestDelay.fixed(1.0)))
        self.assertEqual(domain.queue.delay, RequestDelay.fixed(1.0))
        self.assertEqual(domain.remove_delay(), RequestDelay.fixed(1.0))
        self.assertIsNone(domain.config.delay)

    def test_disallow_alias(self):
        registry = AllowList()
        registry.allow("example.com")
        registry.disallow("example.com")
        self.assertEqual(len(registry), 0)

    def test_domain_names_normalized(self):
        """Registration and routing ignore case and a trailing dot."""
        registry = AllowList()
        registry.register("Example.COM.")
        self.assertIn("example.com", registry)
        self.assertIsNone(registry.add_request(_get("https://EXAMPLE.com/x")))


class TestBlockList(unittest.TestCase):
    """Verify block-list routing and per-host queues."""

    def test_blocked_domain_rejected(self):
        """Blocked hosts are rejected with USER_CONFIG."""
        registry = BlockList(blocked=["x.test"])
        err = registry.add_request(_get("https://x.test/"), state="s")
        self.assertIsInstance(err, DisallowedRequest)
        self.assertEqual(err.reason, DisallowReason.USER_CONFIG)
        self.assertEqual(err.state, "s")

    def test_other_hosts_get_own_queues(self):
        """Each non-blocked host gets a queue on first use."""
        registry = BlockList(blocked=["x.test"])
        registry.add_request(_get("https://y.test/1"))
        registry.add_request(_get("https://z.test/1"))
        registry.add_request(_get("https://y.test/2"))
        self.assertEqual([d.name for d in registry.domains()], ["y.test", "z.test"])
        self.assertEqual(len(registry.lookup_mut("y.test").queue), 2)

    def test_shared_config_applies_to_all_hosts(self):
        """All hosts share one configuration object."""
        registry = BlockList(DomainConfig(max_depth=0))
        err = registry.add_request(_get("https://y.test/"), depth=1)
        self.assertIsInstance(err, ReachedMaxDepth)

    def test_block_displaces_queued_requests(self):
        """Blocking a host already in use returns its queued requests."""
        registry = BlockList()
        registry.add_request(_get("https://y.test/1"), state=1)
        displaced = registry.block("y.test")
        self.assertEqual([q.state for q in displaced], [1])
        self.assertTrue(registry.is_blocked("y.test"))
        self.assertIsInstance(registry.add_request(_get("https://y.test/2")), DisallowedRequest)

    def test_unblock_allows_again(self):
        """Unblocking restores routing to the host."""
        registry = BlockList(blocked=["x.test"])
        registry.unblock("x.test")
        self.assertIsNone(registry.add_request(_get("https://x.test/")))

    def test_host_cap_defaults_to_global(self):
        """Without an explicit cap each host may use the global cap."""
        registry = BlockList(max_concurrent_requests=7)
        registry.add_request(_get("https://y.test/"))
        self.assertEqual(registry.lookup_mut("y.test").cap, 7)

    def test_set_delay_updates_existing_queues(self):
        """A new pacing policy reaches queues created earlier."""
        registry = BlockList()
        registry.add_request(_get("https://y.test/"))
        registry.set_delay(RequestDelay.fixed(0.5))
        self.assertEqual(registry.lookup_mut("y.test").queue.delay, RequestDelay.fixed(0.5))
        registry.set_delay(None)
        self.assertIsNone(registry.lookup_mut("y.test").queue.delay)

    def test_host_changes_stay_local(self):
        """Tuning one host through lookup_mut() leaves other and later hosts alone."""
        registry = BlockList()
        registry.add_request(_get("https://a.test/"))
        registry.add_request(_get("https://b.test/"))
        host = registry.lookup_mut("a.test")
        host.set_delay(RequestDelay.fixed(5.0))
        host.config.max_depth = 0
        self.assertIsNone(registry.add_request(_get("https://c.test/"), depth=1))
        self.assertIsNone(registry.lookup_mut("b.test").queue.delay)
        self.assertIsNone(registry.lookup_mut("c.test").queue.delay)
        self.assertIsNone(registry.config.delay)
        self.assertIsNone(registry.config.max_depth)

    def test_prune_drops_idle_hosts_only(self):
        """Hosts with queued work or a pending pacing deadline survive pruning."""
        now = [0.0]
        registry = BlockList(DomainConfig(delay=RequestDelay.fixed(1.0)), clock=lambda: now[0])
        registry.add_request(_get("https://paced.test/1"))
        registry.add_request(_get("https://busy.test/1"))
        registry.add_request(_get("https://busy.test/2"))
        registry.lookup_mut("paced.test").queue.poll_next()
        registry.lookup_mut("busy.test").queue.poll_next()
        self.assertEqual(registry.prune(), [])
        now[0] = 1.5
        self.assertEqual(registry.prune(), ["paced.test"])
        self.assertNotIn("paced.test", registry)
        self.assertIn("busy.test", registry)

    def test_allow_list_never_prunes(self):
        registry = AllowList()
        registry.register("example.com")
        self.assertEqual(registry.prune(), [])
        self.assertIn("example.com", registry)


if __name__ == "__main__":
    unittest.main()
