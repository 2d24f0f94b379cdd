"""Tests for collection definition loading and validation."""

import logging

import pytest

from docmirror.errors import SchemaValidationError
from docmirror.schema import dangling_references, load_definitions, validate_definitions

VALID = """
collections:
  - name: User
    fields:
      firstName: {signature: String}
      account: {signature: "Ref<Account>?"}
      friends: "Array<Ref<User>>"
    computed_fields:
      age: {signature: Number, body: "(doc) => 0"}
  - name: Account
    fields:
      owner: {signature: "Ref<User>"}
"""


@pytest.fixture
def definitions_file(tmp_path):
    path = tmp_path / "collections.yaml"
    path.write_text(VALID)
    return path


class TestValidation:
    """Tests for JSON Schema validation of definition documents."""

    def test_valid_document(self):
        valid, error = validate_definitions(
            {"collections": [{"name": "User", "fields": {"a": "String"}}]}
        )

        assert valid is True
        assert error is None

    def test_missing_collections(self):
        valid, error = validate_definitions({})

        assert valid is False
        assert "collections" in error

    def test_error_names_path(self):
        valid, error = validate_definitions(
            {"collections": [{"name": "User", "fields": {"a": {"type": "String"}}}]}
        )

        assert valid is False
        assert "collections.0.fields.a" in error

    def test_computed_field_requires_signature(self):
        valid, error = validate_definitions(
            {"collections": [{"name": "User", "computed_fields": {"age": {"body": "x"}}}]}
        )

        assert valid is False
        assert "signature" in error

    def test_empty_name_is_invalid(self):
        valid, _ = validate_definitions({"collections": [{"name": ""}]})

        assert valid is False


class TestDanglingReferences:
    def test_reports_unknown_targets(self):
        problems = dangling_references(
            [{"name": "User", "fields": {"team": "Ref<Team>", "self": "Ref<User>"}}]
        )

        assert problems == ["User.team references unknown collection 'Team'"]


class TestLoadDefinitions:
    """Tests for reading definition files."""

    def test_load(self, definitions_file):
        definitions = load_definitions(definitions_file)

        assert [d["name"] for d in definitions] == ["User", "Account"]
        assert definitions[0]["fields"]["friends"] == "Array<Ref<User>>"

    def test_missing_file(self, tmp_path):
        with pytest.raises(SchemaValidationError):
            load_definitions(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("collections: [unclosed")

        with pytest.raises(SchemaValidationError):
            load_definitions(path)

    def test_invalid_document(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("collections:\n  - fields: {}\n")

        with pytest.raises(SchemaValidationError) as exc_info:
            load_definitions(path)

        assert "name" in str(exc_info.value)

    def test_dangling_reference_is_warned(self, tmp_path, caplog):
        path = tmp_path / "collections.yaml"
        path.write_text("collections:\n  - name: User\n    fields:\n      team: Ref<Team>\n")

        with caplog.at_level(logging.WARNING, logger="docmirror.schema"):
            definitions = load_definitions(path)

        assert len(definitions) == 1
        assert "unknown collection 'Team'" in caplog.text
