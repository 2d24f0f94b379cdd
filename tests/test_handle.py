"""Tests for DocumentHandle."""

import pytest

from docmirror.cache import CollectionCache
from docmirror.handle import DocumentHandle
from docmirror.registry import StoreContext


@pytest.fixture
def cache():
    return CollectionCache("User")


class TestReads:
    """Tests for reads that always go to the current entry."""

    def test_reads_are_never_stale(self, cache):
        handle = cache.upsert({"id": "1", "name": "x"})

        cache.upsert({"id": "1", "name": "y"})

        assert handle["name"] == "y"
        assert handle.get("name") == "y"
        assert handle.current["name"] == "y"

    def test_current_is_a_copy(self, cache):
        handle = cache.upsert({"id": "1", "name": "x"})

        handle.current["name"] = "changed"

        assert handle["name"] == "x"

    def test_missing_field(self, cache):
        handle = cache.upsert({"id": "1"})

        assert handle.get("age") is None
        assert handle.get("age", 3) == 3
        assert "age" not in handle
        assert "id" in handle
        with pytest.raises(KeyError):
            handle["age"]

    def test_handle_of_removed_document(self, cache):
        handle = cache.upsert({"id": "1", "name": "x"})
        cache.remove("1")

        assert not handle.exists
        assert handle.current is None
        assert handle.get("name") is None
        assert handle.to_dict() is None

    def test_identity_follows_temporary_remap(self, cache):
        handle = cache.upsert({"id": "TEMP_1", "name": "x"})

        cache.upsert({"id": "42", "name": "x"}, match_key="TEMP_1")

        assert handle.identity == "42"
        assert handle["name"] == "x"

    def test_collection(self, cache):
        assert cache.by_identity("1").collection == "User"


class TestEquality:
    def test_handles_to_same_document_are_equal(self, cache):
        cache.upsert({"id": "1"})

        assert cache.by_identity("1") == cache.by_identity("1")
        assert cache.by_identity("1") != cache.by_identity("2")
        assert len({cache.by_identity("1"), cache.by_identity("1")}) == 1

    def test_handles_across_caches_differ(self, cache):
        other = CollectionCache("Other")

        assert DocumentHandle(cache, "1") != DocumentHandle(other, "1")

    def test_equal_after_remap(self, cache):
        temp = cache.upsert({"id": "TEMP_1"})
        cache.upsert({"id": "42"}, match_key="TEMP_1")

        assert temp == cache.by_identity("42")


class TestFollow:
    """Tests for traversing reference fields."""

    @pytest.fixture
    def context(self):
        context = StoreContext()
        context.define([
            {
                "name": "User",
                "fields": {
                    "account": {"signature": "Ref<Account>?"},
                    "friends": {"signature": "Array<Ref<User>>"},
                },
            },
            {"name": "Account", "fields": {"balance": {"signature": "Number"}}},
        ])
        return context.init()

    def test_follow_single_reference(self, context):
        context["Account"].upsert({"id": "a1", "balance": 5})
        user = context["User"].upsert({"id": "u1", "account": "a1"})

        account = user.follow("account")

        assert account.identity == "a1"
        assert account["balance"] == 5

    def test_follow_array_reference(self, context):
        users = context["User"]
        users.upsert({"id": "u2"})
        user = users.upsert({"id": "u1", "friends": ["u2"]})

        assert [f.identity for f in user.follow("friends")] == ["u2"]

    def test_follow_null_reference(self, context):
        user = context["User"].upsert({"id": "u1", "account": None})

        assert user.follow("account") is None

    def test_follow_plain_field(self, context):
        user = context["User"].upsert({"id": "u1", "nick": "ada"})

        assert user.follow("nick") == "ada"

    def test_to_dict_unresolves(self, context):
        user = context["User"].upsert({"id": "u1", "account": "a1", "friends": ["u2"]})

        assert user.to_dict() == {
            "id": "u1",
            "coll": "User",
            "account": "a1",
            "friends": ["u2"],
        }


class TestMutations:
    """Tests for handle mutation methods."""

    def test_update_returns_handle(self, cache):
        handle = cache.upsert({"id": "1", "a": 1})

        assert handle.update({"a": 2}) is handle
        assert handle["a"] == 2

    def test_replace_returns_handle(self, cache):
        handle = cache.upsert({"id": "1", "a": 1})

        assert handle.replace({"b": 2}) is handle
        assert handle.to_dict() == {"id": "1", "coll": "User", "b": 2}

    def test_delete(self, cache):
        handle = cache.upsert({"id": "1"})

        handle.delete()

        assert not handle.exists

    def test_repr(self, cache):
        assert repr(cache.by_identity("9")) == "DocumentHandle(User:9, pending)"
