"""Tests for reference signatures and resolution."""

from datetime import date

import pytest

from docmirror.errors import MalformedPayloadError
from docmirror.references import (
    Reference,
    ReferenceResolver,
    RefSignature,
    computed_defaults,
    field_signatures,
    parse_signature,
    raw_identity,
    unresolve,
)
from docmirror.registry import StoreContext

SIGNATURES = {
    "firstName": "String",
    "account": "Ref<Account>?",
    "friends": "Array<Ref<User>>",
}


@pytest.fixture
def context():
    """Create a local-only context with User and Account caches."""
    context = StoreContext()
    context.register("User")
    context.register("Account")
    return context.init()


@pytest.fixture
def resolver(context):
    return ReferenceResolver(context)


class TestSignatures:
    """Tests for parsing declared field types."""

    @pytest.mark.parametrize(
        "signature,expected",
        [
            ("Ref<Account>", RefSignature("Account")),
            ("Ref<Account>?", RefSignature("Account", optional=True)),
            ("Array<Ref<User>>", RefSignature("User", is_array=True)),
            ("Array<Ref<User>>?", RefSignature("User", is_array=True, optional=True)),
            (" Ref< Account > ", RefSignature("Account")),
        ],
    )
    def test_reference_signatures(self, signature, expected):
        """Test that reference signatures are recognized."""
        assert parse_signature(signature) == expected

    @pytest.mark.parametrize(
        "signature", ["String", "Number?", "Array<String>", "", None, "Ref<>"]
    )
    def test_plain_signatures(self, signature):
        """Test that other types are not references."""
        assert parse_signature(signature) is None

    def test_field_signatures_accepts_shorthand(self):
        """Test both the full and the shorthand field forms."""
        definition = {
            "name": "User",
            "fields": {
                "firstName": {"signature": "String"},
                "account": "Ref<Account>",
                "broken": {"type": "String"},
            },
        }

        assert field_signatures(definition) == {
            "firstName": "String",
            "account": "Ref<Account>",
        }

    def test_field_signatures_without_definition(self):
        assert field_signatures(None) == {}

    def test_computed_defaults(self):
        """Test placeholder values for computed fields."""
        definition = {
            "computed_fields": {
                "age": {"signature": "Number"},
                "label": {"signature": "String", "body": "(doc) => doc.name"},
                "active": {"signature": "Boolean?"},
                "meta": {"signature": "Object"},
                "day": {"signature": "Date"},
                "other": {"signature": "Ref<User>"},
            }
        }

        defaults = computed_defaults(definition)

        assert defaults["age"] == 0
        assert defaults["label"] == ""
        assert defaults["active"] is False
        assert defaults["meta"] == {}
        assert defaults["day"] == date.today().isoformat()
        assert defaults["other"] is None

    def test_computed_object_defaults_are_distinct(self):
        """Test that each document gets its own container."""
        definition = {"computed_fields": {"meta": {"signature": "Object"}}}

        first = computed_defaults(definition)["meta"]
        second = computed_defaults(definition)["meta"]

        assert first is not second


class TestRawIdentity:
    """Tests for extracting foreign identities."""

    @pytest.mark.parametrize(
        "value,expected",
        [("a1", "a1"), (42, "42"), ({"id": 7, "x": 1}, "7"), (None, None)],
    )
    def test_valid_values(self, value, expected):
        assert raw_identity(value) == expected

    @pytest.mark.parametrize("value", [True, 1.5, ["a"], {"name": "x"}])
    def test_invalid_values(self, value):
        """Test that values which cannot denote an identity are malformed."""
        with pytest.raises(MalformedPayloadError):
            raw_identity(value)


class TestReferenceResolver:
    """Tests for resolving reference fields into live accessors."""

    def test_non_reference_fields_pass_through(self, resolver):
        resolved = resolver.resolve({"firstName": "Ada", "extra": [1, 2]}, SIGNATURES)

        assert resolved == {"firstName": "Ada", "extra": [1, 2]}

    def test_reference_reads_live_cache(self, context, resolver):
        """Test that a reference reads the related cache at call time."""
        accounts = context.cache("Account")
        accounts.upsert({"id": "a1", "balance": 10})

        resolved = resolver.resolve({"account": "a1"}, SIGNATURES)
        ref = resolved["account"]
        assert isinstance(ref, Reference)
        assert ref()["balance"] == 10

        accounts.upsert({"id": "a1", "balance": 25})

        assert ref()["balance"] == 25

    def test_reference_before_target_loads(self, context, resolver):
        """Test that a reference resolves once its target arrives."""
        ref = resolver.resolve({"account": "a9"}, SIGNATURES)["account"]
        handle = ref()
        assert handle is not None
        assert not handle.exists

        context.cache("Account").upsert({"id": "a9", "balance": 1})

        assert handle.exists
        assert handle["balance"] == 1

    def test_null_reference(self, resolver):
        """Test that a null reference yields None when invoked."""
        ref = resolver.resolve({"account": None}, SIGNATURES)["account"]

        assert ref() is None

    def test_array_reference(self, context, resolver):
        users = context.cache("User")
        users.upsert({"id": "u1"})
        users.upsert({"id": "u2"})

        friends = resolver.resolve({"friends": ["u1", {"id": "u2"}]}, SIGNATURES)["friends"]

        assert [ref().identity for ref in friends] == ["u1", "u2"]

    def test_null_array_reference(self, resolver):
        assert resolver.resolve({"friends": None}, SIGNATURES) == {"friends": []}

    def test_array_field_with_scalar(self, resolver):
        """Test that an array reference field holding a scalar is malformed."""
        with pytest.raises(MalformedPayloadError):
            resolver.resolve({"friends": "u1"}, SIGNATURES)

    def test_reference_to_unregistered_collection(self, context):
        """Test that a reference to an unknown collection yields None."""
        ref = Reference(context, "Missing", "x")

        assert ref() is None

    def test_reference_equality(self, context):
        assert Reference(context, "User", "1") == Reference(context, "User", "1")
        assert Reference(context, "User", "1") != Reference(context, "User", "2")
        assert Reference(context, "User", "1") != Reference(context, "Account", "1")


class TestUnresolve:
    """Tests for reducing references back to raw identities."""

    def test_unresolve_nested(self, context):
        value = {
            "account": Reference(context, "Account", "a1"),
            "friends": [Reference(context, "User", "u1"), Reference(context, "User", None)],
            "nested": {"ref": Reference(context, "User", "u2")},
            "plain": 3,
        }

        assert unresolve(value) == {
            "account": "a1",
            "friends": ["u1", None],
            "nested": {"ref": "u2"},
            "plain": 3,
        }
