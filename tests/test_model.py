"""Tests for the data model: references, contracts, jobs, secrets."""
import pytest

from reuseci.errors import InvalidDefinitionError, InvalidReferenceError
from reuseci.model import Bundle, BundleCall, Definition, Job, Param, Reference, Secret, Step, matches_type


class TestReference:
    def test_parse(self):
        ref = Reference.parse("acme/ci/python@v1.2")
        assert ref.location == "acme/ci/python"
        assert ref.version == "v1.2"
        assert ref.owner == "acme"
        assert ref.name == "ci/python"
        assert str(ref) == "acme/ci/python@v1.2"

    def test_parse_is_identity_for_references(self):
        ref = Reference("acme/ci", "v1")
        assert Reference.parse(ref) is ref

    @pytest.mark.parametrize(
        "text",
        ["acme/ci", "acme/ci@", "@v1", "ci@v1", "acme//ci@v1", "acme/../ci@v1", "acme/ci@v1/x"],
    )
    def test_parse_rejects(self, text):
        with pytest.raises(InvalidReferenceError):
            Reference.parse(text)

    def test_references_order_and_hash(self):
        a, b = Reference.parse("acme/a@v1"), Reference.parse("acme/a@v2")
        assert sorted([b, a]) == [a, b]
        assert {a: 1}[Reference("acme/a", "v1")] == 1


class TestParam:
    def test_required_with_default_rejected(self):
        with pytest.raises(InvalidDefinitionError):
            Param(type="string", required=True, default="x")

    def test_default_must_match_type(self):
        with pytest.raises(InvalidDefinitionError):
            Param(type="number", default="3")

    def test_unknown_type(self):
        with pytest.raises(InvalidDefinitionError):
            Param(type="list")


def test_bool_is_not_a_number():
    assert matches_type(3, "number")
    assert matches_type(2.5, "number")
    assert not matches_type(True, "number")
    assert matches_type(False, "boolean")
    assert matches_type(Secret("x"), "string")


class TestJob:
    def test_needs_steps(self):
        with pytest.raises(InvalidDefinitionError):
            Job(name="a", steps=[])

    def test_condition_checked(self):
        with pytest.raises(InvalidDefinitionError):
            Job(name="a", steps=[Step("s", "ok")], condition="sometimes")

    @pytest.mark.parametrize("timeout", [0, -1, True, "10"])
    def test_timeout_checked(self, timeout):
        with pytest.raises(InvalidDefinitionError):
            Job(name="a", steps=[Step("s", "ok")], timeout=timeout)


def test_definition_secrets_are_strings():
    with pytest.raises(InvalidDefinitionError):
        Definition(
            location="acme/ci",
            version="v1",
            jobs=[Job(name="a", steps=[Step("s", "ok")])],
            secrets={"TOKEN": Param(type="number")},
        )


def test_bundle_call_values_are_scalars():
    with pytest.raises(InvalidDefinitionError):
        BundleCall(name="x", uses=Reference.parse("acme/b@v1"), with_={"list": [1, 2]})


def test_bundle_reference():
    b = Bundle(location="acme/b", version="v3", steps=[Step("s", "ok")])
    assert b.reference == Reference("acme/b", "v3")
    assert b.kind == "bundle"


class TestSecret:
    def test_masked(self):
        s = Secret("hunter2")
        assert "hunter2" not in repr(s)
        assert str(s) == "***"
        assert f"{s}" == "***"
        assert s.reveal() == "hunter2"

    def test_equality(self):
        assert Secret("a") == Secret("a")
        assert Secret("a") != "a"
