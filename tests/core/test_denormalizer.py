"""
Tests for the caching denormalizer.
"""
import unittest
from types import MappingProxyType

from hypothesis import HealthCheck, given
from hypothesis import settings as hypothesis_settings
from hypothesis import strategies as st

from relstate.core.denormalizer import Denormalizer, merge_item_with_status
from relstate.core.exceptions import (ConfigError, MissingSchemaError,
                                      UnknownSchemaError)
from relstate.core.resolver import ObjectResolver
from relstate.core.status import Collection, get_status, update_status
from relstate.core.types import ItemDescriptor, StorageMode
from tests.store import build_store, make_collection, make_one, make_record, ref

PATHS = {"user": "entities.users", "post": "entities.posts"}


class CountingResolver(ObjectResolver):
    def __init__(self, *args, **kwargs):
        kwargs.setdefault("merge", merge_item_with_status)
        super().__init__(*args, **kwargs)
        self.calls = []

    def resolve(self, descriptor, context, resolve_nested):
        self.calls.append(str(descriptor))
        return super().resolve(descriptor, context, resolve_nested)


class ExplodingResolver(CountingResolver):
    def __init__(self, explode_on):
        super().__init__()
        self.explode_on = explode_on

    def resolve(self, descriptor, context, resolve_nested):
        if str(descriptor) == self.explode_on:
            raise RuntimeError(f"storage unavailable for {descriptor}")
        return super().resolve(descriptor, context, resolve_nested)


def store_schema_map():
    store = build_store()
    return {"user": store["entities"]["users"], "post": store["entities"]["posts"]}


def chain_schema_map(length):
    """node.0 -> node.1 -> ... -> node.<length - 1>"""
    nodes = {}
    for i in range(length):
        following = ref("node", str(i + 1)) if i + 1 < length else None
        nodes[str(i)] = make_record("node", str(i), {"next": following}, position=i)
    return {"node": nodes}


def ring_schema_map(size):
    """node.0 -> node.1 -> ... -> node.<size - 1> -> node.0"""
    return {
        "node": {
            str(i): make_record("node", str(i), {"next": ref("node", str((i + 1) % size))})
            for i in range(size)
        }
    }


def resolved_depth(item):
    depth = 0
    while isinstance(item.get("next"), dict) and "next" in item["next"]:
        item = item["next"]
        depth += 1
    return depth


class DenormalizerTestCase(unittest.TestCase):
    def setUp(self):
        self.schema_map = store_schema_map()
        self.resolver = CountingResolver()
        self.denormalizer = Denormalizer(resolver=self.resolver)


class DenormalizeItemTests(DenormalizerTestCase):
    def test_relationship_cycle_leaves_bare_reference(self):
        schema_map = {
            "user": {
                "1": make_record("user", "1", {"friend": ref("user", "2")}),
                "2": make_record("user", "2", {"friend": ref("user", "1")}),
            }
        }
        user = self.denormalizer.denormalize_item(ref("user", "1"), schema_map)

        self.assertEqual(user["id"], "1")
        self.assertEqual(user["friend"]["id"], "2")
        self.assertEqual(user["friend"]["friend"], {"id": "1", "type": "user"})
        # The result was built through a cycle and is not cached.
        self.assertEqual(len(self.denormalizer.cache), 0)

    def test_depth_zero_leaves_relationship_unexpanded(self):
        post = self.denormalizer.denormalize_item(ref("post", "11"), self.schema_map, max_depth=0)

        self.assertEqual(post["title"], "Kernels")
        self.assertEqual(post["author"], {"id": "3", "type": "user"})
        self.assertEqual(len(self.denormalizer.cache), 0)

    def test_repeated_call_is_served_from_cache(self):
        first = self.denormalizer.denormalize_item(ref("post", "11"), self.schema_map)
        calls = len(self.resolver.calls)
        second = self.denormalizer.denormalize_item(ref("post", "11"), self.schema_map)

        self.assertIs(first, second)
        self.assertEqual(len(self.resolver.calls), calls)
        self.assertEqual(self.resolver.calls, ["post.11", "user.3"])

    def test_flush_cache(self):
        first = self.denormalizer.denormalize_item(ref("post", "11"), self.schema_map)
        self.denormalizer.flush_cache()

        self.assertEqual(len(self.denormalizer.cache), 0)
        self.assertIsNot(self.denormalizer.denormalize_item(ref("post", "11"), self.schema_map), first)

    def test_modification_cache_controls_keep_values(self):
        first = self.denormalizer.denormalize_item(ref("post", "11"), self.schema_map)
        self.denormalizer.flush_modification_cache()
        self.denormalizer.invalidate_modification_cache()

        self.assertIs(self.denormalizer.denormalize_item(ref("post", "11"), self.schema_map), first)

    def test_replaced_record_is_not_served_stale(self):
        self.denormalizer.denormalize_item(ref("post", "11"), self.schema_map)
        self.schema_map["post"]["11"] = make_record(
            "post", "11", {"author": ref("user", "3")}, title="Kernels, revised"
        )

        post = self.denormalizer.denormalize_item(ref("post", "11"), self.schema_map)
        self.assertEqual(post["title"], "Kernels, revised")

    def test_modified_nested_record_is_not_served_stale(self):
        first = self.denormalizer.denormalize_item(ref("post", "11"), self.schema_map)
        update_status(self.schema_map["user"]["3"], busy=True)

        second = self.denormalizer.denormalize_item(ref("post", "11"), self.schema_map)
        self.assertIsNot(first, second)
        self.assertTrue(get_status(second["author"]).busy)
        self.assertFalse(get_status(first["author"]).busy)

    def test_missing_nested_record_that_appears_later(self):
        self.schema_map["post"]["20"] = make_record("post", "20", {"author": ref("user", "42")})

        first = self.denormalizer.denormalize_item(ref("post", "20"), self.schema_map)
        self.assertEqual(first["author"], {"id": "42", "type": "user"})
        self.assertIs(self.denormalizer.denormalize_item(ref("post", "20"), self.schema_map), first)

        self.schema_map["user"]["42"] = make_record("user", "42", {"friend": None}, name="Barbara")
        second = self.denormalizer.denormalize_item(ref("post", "20"), self.schema_map)
        self.assertEqual(second["author"]["name"], "Barbara")

    def test_missing_root_record_is_bare_reference(self):
        self.assertEqual(
            self.denormalizer.denormalize_item(ref("user", "99"), self.schema_map),
            {"id": "99", "type": "user"},
        )
        self.assertEqual(len(self.denormalizer.cache), 0)

    def test_status_is_carried_onto_items(self):
        post = self.denormalizer.denormalize_item(ref("post", "11"), self.schema_map)
        source = get_status(self.schema_map["post"]["11"])

        self.assertEqual(get_status(post), source)
        self.assertIsNot(get_status(post), source)

    def test_unknown_schema(self):
        with self.assertRaises(UnknownSchemaError):
            self.denormalizer.denormalize_item(ref("comment", "1"), self.schema_map)
        self.assertEqual(len(self.denormalizer.cache), 0)

    def test_fatal_error_propagates_without_caching(self):
        denormalizer = Denormalizer(resolver=ExplodingResolver("post.11"))

        with self.assertRaises(RuntimeError):
            denormalizer.denormalize_collection(["12", "11"], self.schema_map, schema="post")
        self.assertEqual(len(denormalizer.cache), 0)

    def test_provide_storage_requires_schema_map(self):
        self.assertIs(self.denormalizer.mode, StorageMode.PROVIDE_STORAGE)
        with self.assertRaises(ConfigError):
            self.denormalizer.denormalize_item(ref("post", "11"))


class DepthLimitTests(DenormalizerTestCase):
    @hypothesis_settings(max_examples=25, suppress_health_check=[HealthCheck.too_slow])
    @given(st.integers(min_value=0, max_value=10))
    def test_nesting_never_exceeds_limit(self, max_depth):
        denormalizer = Denormalizer(max_depth=max_depth)
        head = denormalizer.denormalize_item(ref("node", "0"), chain_schema_map(8))

        self.assertEqual(resolved_depth(head), min(max_depth, 7))
        if max_depth < 7:
            item = head
            for _ in range(max_depth):
                item = item["next"]
            self.assertEqual(item["next"], {"id": str(max_depth + 1), "type": "node"})

    def test_depth_limit_results_are_not_cached(self):
        """Nested items are not cached either when the limit was reached."""
        denormalizer = Denormalizer(resolver=self.resolver, max_depth=1, cache_child_objects=True)
        denormalizer.denormalize_item(ref("node", "0"), chain_schema_map(8))

        self.assertEqual(len(denormalizer.cache), 0)

    def test_unlimited_result_is_not_served_for_bounded_request(self):
        schema_map = chain_schema_map(3)
        full = self.denormalizer.denormalize_item(ref("node", "0"), schema_map)
        calls = len(self.resolver.calls)

        shallow = self.denormalizer.denormalize_item(ref("node", "0"), schema_map, max_depth=0)
        self.assertEqual(shallow["next"], {"id": "1", "type": "node"})
        self.assertGreater(len(self.resolver.calls), calls)

        # The unlimited entry is still there for unlimited requests.
        self.assertIs(self.denormalizer.denormalize_item(ref("node", "0"), schema_map), full)

    def test_bounded_result_serves_deeper_request_that_fits(self):
        schema_map = chain_schema_map(2)
        self.denormalizer.set_nesting_depth_limit(5)
        first = self.denormalizer.denormalize_item(ref("node", "0"), schema_map)

        self.assertIs(self.denormalizer.denormalize_item(ref("node", "0"), schema_map, max_depth=1), first)
        self.assertIsNot(self.denormalizer.denormalize_item(ref("node", "0"), schema_map, max_depth=None), first)

    def test_set_nesting_depth_limit(self):
        self.denormalizer.set_nesting_depth_limit(2)

        self.assertEqual(self.denormalizer.max_depth, 2)
        self.assertEqual(self.resolver.max_depth, 2)
        self.assertEqual(self.denormalizer.cache.default_max_depth, 2)

        post = self.denormalizer.denormalize_item(ref("post", "10"), self.schema_map)
        self.assertEqual(post["author"]["friend"]["friend"], {"id": "1", "type": "user"})

    def test_invalid_depth_limits(self):
        for value in (-1, "2", 1.5, True):
            with self.assertRaises(ValueError):
                self.denormalizer.set_nesting_depth_limit(value)
        with self.assertRaises(ValueError):
            self.denormalizer.denormalize_item(ref("post", "11"), self.schema_map, max_depth=-1)


class CycleTests(unittest.TestCase):
    @hypothesis_settings(max_examples=20, suppress_health_check=[HealthCheck.too_slow])
    @given(st.integers(min_value=1, max_value=20))
    def test_cycles_of_any_length_terminate(self, size):
        denormalizer = Denormalizer()
        item = denormalizer.denormalize_item(ref("node", "0"), ring_schema_map(size))

        for _ in range(size - 1):
            item = item["next"]
        self.assertEqual(item["next"], {"id": "0", "type": "node"})
        self.assertEqual(len(denormalizer.cache), 0)

    def test_cycle_below_root_does_not_block_root_caching(self):
        schema_map = {
            "user": {
                "1": make_record("user", "1", {"friend": ref("user", "2")}),
                "2": make_record("user", "2", {"friend": ref("user", "3")}),
                "3": make_record("user", "3", {"friend": ref("user", "2")}),
            }
        }
        denormalizer = Denormalizer()
        user = denormalizer.denormalize_item(ref("user", "1"), schema_map)

        self.assertEqual(user["friend"]["friend"]["friend"], {"id": "2", "type": "user"})
        self.assertIn(("user", "1"), denormalizer.cache)


class ChildCachingTests(DenormalizerTestCase):
    def setUp(self):
        super().setUp()
        self.denormalizer = Denormalizer(resolver=self.resolver, cache_child_objects=True)

    def test_nested_items_are_cached(self):
        post = self.denormalizer.denormalize_item(ref("post", "11"), self.schema_map)
        self.assertIn(("user", "3"), self.denormalizer.cache)

        self.resolver.calls.clear()
        other = self.denormalizer.denormalize_item(ref("post", "12"), self.schema_map)

        self.assertEqual(self.resolver.calls, ["post.12"])
        self.assertIs(other["author"], post["author"])

    def test_only_root_is_cached_by_default(self):
        denormalizer = Denormalizer()
        denormalizer.denormalize_item(ref("post", "11"), self.schema_map)

        self.assertIn(("post", "11"), denormalizer.cache)
        self.assertNotIn(("user", "3"), denormalizer.cache)


class DenormalizeOneTests(DenormalizerTestCase):
    def test_reference_status_is_cloned_onto_result(self):
        reference = make_one("user", "3")
        user = self.denormalizer.denormalize_one(reference, self.schema_map, "post")

        self.assertEqual(user["name"], "Linus")
        self.assertEqual(get_status(user), get_status(reference))
        self.assertIsNot(get_status(user), get_status(reference))

        update_status(user, busy=True)
        self.assertFalse(get_status(reference).busy)

    def test_reference_is_cached(self):
        reference = make_one("user", "3")
        first = self.denormalizer.denormalize_one(reference, self.schema_map)
        calls = len(self.resolver.calls)

        self.assertIs(self.denormalizer.denormalize_one(reference, self.schema_map), first)
        self.assertEqual(len(self.resolver.calls), calls)

    def test_modified_reference_status_is_not_served_stale(self):
        reference = make_one("user", "3")
        first = self.denormalizer.denormalize_one(reference, self.schema_map)
        update_status(reference, error=True)

        second = self.denormalizer.denormalize_one(reference, self.schema_map)
        self.assertIsNot(first, second)
        self.assertTrue(get_status(second).error)

    def test_primitive_id(self):
        post = self.denormalizer.denormalize_one("11", self.schema_map, schema="post")
        self.assertEqual(
            post, self.denormalizer.denormalize_item(ItemDescriptor("11", "post"), self.schema_map)
        )

    def test_primitive_id_without_schema(self):
        with self.assertRaises(MissingSchemaError):
            self.denormalizer.denormalize_one("11", self.schema_map)

    def test_absent_reference(self):
        self.assertIsNone(self.denormalizer.denormalize_one(None, self.schema_map))
        self.assertEqual(self.resolver.calls, [])
        self.assertEqual(len(self.denormalizer.cache), 0)


class DenormalizeCollectionTests(DenormalizerTestCase):
    def setUp(self):
        super().setUp()
        self.schema_map["post"] = {
            str(i): make_record("post", str(i), {"author": ref("user", "3")}, title=f"Post {i}")
            for i in (1, 2, 3)
        }

    def test_repeated_call_is_served_from_cache(self):
        first = self.denormalizer.denormalize_collection([1, 2, 3], self.schema_map, schema="post")
        calls = len(self.resolver.calls)
        second = self.denormalizer.denormalize_collection([1, 2, 3], self.schema_map, schema="post")

        self.assertEqual(first, second)
        self.assertEqual(len(self.resolver.calls), calls)
        self.assertEqual([post["title"] for post in second], ["Post 1", "Post 2", "Post 3"])

    def test_collection_status_is_cloned_and_cached(self):
        collection = make_collection("post", ["3", "1"])
        first = self.denormalizer.denormalize_collection(collection, self.schema_map)

        self.assertIsInstance(first, Collection)
        self.assertEqual([post["id"] for post in first], ["3", "1"])
        self.assertEqual(get_status(first), get_status(collection))
        self.assertIsNot(get_status(first), get_status(collection))
        self.assertIs(self.denormalizer.denormalize_collection(collection, self.schema_map), first)

    def test_modified_collection_is_not_served_stale(self):
        collection = make_collection("post", ["1"])
        first = self.denormalizer.denormalize_collection(collection, self.schema_map)
        update_status(collection, busy=True)

        second = self.denormalizer.denormalize_collection(collection, self.schema_map)
        self.assertIsNot(first, second)
        self.assertTrue(get_status(second).busy)

    def test_collection_without_status_is_plain_list(self):
        posts = self.denormalizer.denormalize_collection(["1"], self.schema_map, schema="post")
        self.assertNotIsInstance(posts, Collection)

    def test_missing_schema(self):
        with self.assertRaises(MissingSchemaError):
            self.denormalizer.denormalize_collection([1, 2], self.schema_map)

    def test_absent_collection(self):
        self.assertIsNone(self.denormalizer.denormalize_collection(None, self.schema_map, schema="post"))
        self.assertEqual(self.resolver.calls, [])
        self.assertEqual(len(self.denormalizer.cache), 0)


class FindStorageTests(unittest.TestCase):
    def setUp(self):
        self.store = build_store()
        self.store_calls = 0

    def get_store(self):
        self.store_calls += 1
        return self.store

    def test_store_is_read_once_per_call(self):
        denormalizer = Denormalizer(self.get_store, PATHS)
        self.assertIs(denormalizer.mode, StorageMode.FIND_STORAGE)

        post = denormalizer.denormalize_item(ref("post", "11"))
        self.assertEqual(post["author"]["name"], "Linus")
        self.assertEqual(self.store_calls, 1)

        denormalizer.denormalize_collection(["11", "12"], schema="post")
        self.assertEqual(self.store_calls, 2)

    def test_explicit_schema_map_wins(self):
        denormalizer = Denormalizer(self.get_store, PATHS)
        schema_map = store_schema_map()
        schema_map["post"]["11"] = make_record("post", "11", title="Elsewhere")

        self.assertEqual(denormalizer.denormalize_item(ref("post", "11"), schema_map)["title"], "Elsewhere")
        self.assertEqual(self.store_calls, 0)

    def test_new_store_snapshot_is_seen(self):
        denormalizer = Denormalizer(self.get_store, PATHS)
        denormalizer.denormalize_item(ref("post", "11"))

        self.store = build_store()
        self.store["entities"]["posts"]["11"] = make_record("post", "11", title="Kernels, 2nd ed.")
        self.assertEqual(denormalizer.denormalize_item(ref("post", "11"))["title"], "Kernels, 2nd ed.")

    def test_incomplete_configuration_falls_back_to_provide_storage(self):
        with self.assertLogs("relstate.core.denormalizer", level="WARNING"):
            denormalizer = Denormalizer(self.get_store)
        self.assertIs(denormalizer.mode, StorageMode.PROVIDE_STORAGE)


class PlainStatusTests(DenormalizerTestCase):
    """Statuses given as plain dicts, as they come out of a JSON store."""

    def plain_record(self, type_, id_, relationships=None, **attributes):
        record = make_record(type_, id_, relationships, status=False, **attributes)
        record["_status"] = {"schema": type_}
        return record

    def test_store_statuses_are_not_rewritten(self):
        record = self.plain_record("user", "1", {"friend": None}, name="Ada")
        raw_status = record["_status"]

        user = self.denormalizer.denormalize_item(ref("user", "1"), {"user": {"1": record}})

        self.assertIs(record["_status"], raw_status)
        self.assertEqual(get_status(user).schema_name, "user")

    def test_read_only_store_is_served_from_cache(self):
        records = {"1": MappingProxyType(self.plain_record("user", "1", {"friend": None}, name="Ada"))}
        schema_map = {"user": MappingProxyType(records)}

        first = self.denormalizer.denormalize_item(ref("user", "1"), schema_map)
        second = self.denormalizer.denormalize_item(ref("user", "1"), schema_map)

        self.assertIs(first, second)
        self.assertEqual(self.resolver.calls, ["user.1"])

    def test_reference_with_plain_status_is_cached(self):
        raw_status = {"schema": "user", "type": "one"}
        reference = {"value": "3", "_status": raw_status}

        first = self.denormalizer.denormalize_one(reference, self.schema_map)

        self.assertIs(self.denormalizer.denormalize_one(reference, self.schema_map), first)
        self.assertIs(reference["_status"], raw_status)
        self.assertEqual(get_status(first).type, "one")

    def test_collection_with_plain_status_is_cached(self):
        collection = Collection(["11"], status={"schema": "post", "type": "collection"})

        first = self.denormalizer.denormalize_collection(collection, self.schema_map)

        self.assertEqual(first[0]["title"], "Kernels")
        self.assertIs(self.denormalizer.denormalize_collection(collection, self.schema_map), first)


class DottedKeyTests(DenormalizerTestCase):
    def setUp(self):
        super().setUp()
        self.schema_map = {
            "a.b": {"c": make_record("a.b", "c", {"link": ref("a", "b.c")}, who="ab-c")},
            "a": {"b.c": make_record("a", "b.c", {"link": None}, who="a-bc")},
        }

    def test_records_with_dotted_names_are_cached_apart(self):
        self.denormalizer.denormalize_item(ref("a.b", "c"), self.schema_map)
        other = self.denormalizer.denormalize_item(ref("a", "b.c"), self.schema_map)

        self.assertEqual(other["who"], "a-bc")

    def test_dotted_names_are_not_mistaken_for_a_cycle(self):
        item = self.denormalizer.denormalize_item(ref("a.b", "c"), self.schema_map)
        self.assertEqual(item["link"]["who"], "a-bc")
