"""Tests for binding caller values against input and secret contracts."""
import pytest

from reuseci.binder import bind
from reuseci.errors import MissingRequiredInputError, TypeMismatchError, UnknownInputError
from reuseci.model import Param, Secret

CONTRACT = {
    "environment": Param(type="string", required=True),
    "replicas": Param(type="number", default=1),
    "dry_run": Param(type="boolean", default=False),
    "note": Param(type="string"),
}


def test_defaults_fill_optional_entries():
    bound = bind(CONTRACT, {"environment": "prod"})
    assert dict(bound) == {"environment": "prod", "replicas": 1, "dry_run": False, "note": None}


def test_missing_required_names_key():
    with pytest.raises(MissingRequiredInputError) as exc:
        bind(CONTRACT, {"replicas": 2}, owner="acme/deploy@v1")
    assert exc.value.key == "environment"
    assert exc.value.reference == "acme/deploy@v1"
    assert "environment" in str(exc.value)


def test_unknown_key_rejected():
    with pytest.raises(UnknownInputError) as exc:
        bind(CONTRACT, {"environment": "prod", "region": "eu"})
    assert exc.value.key == "region"


@pytest.mark.parametrize(
    "key, value, expected, actual",
    [
        ("replicas", "3", "number", "string"),
        ("replicas", True, "number", "boolean"),
        ("dry_run", 1, "boolean", "number"),
        ("environment", 5, "string", "number"),
    ],
)
def test_type_mismatch(key, value, expected, actual):
    bindings = {"environment": "prod", key: value}
    with pytest.raises(TypeMismatchError) as exc:
        bind(CONTRACT, bindings)
    assert exc.value.key == key
    assert exc.value.expected == expected
    assert exc.value.actual == actual


def test_coerce_strings_from_the_command_line():
    bound = bind(CONTRACT, {"environment": "prod", "replicas": "3", "dry_run": "yes"}, coerce=True)
    assert bound["replicas"] == 3
    assert bound["dry_run"] is True
    assert bind(CONTRACT, {"environment": "x", "replicas": "0.5"}, coerce=True)["replicas"] == 0.5
    with pytest.raises(TypeMismatchError):
        bind(CONTRACT, {"environment": "x", "dry_run": "maybe"}, coerce=True)


def test_binding_does_not_mutate_input():
    supplied = {"environment": "prod"}
    bind(CONTRACT, supplied)
    assert supplied == {"environment": "prod"}


class TestSecrets:
    SECRETS = {"TOKEN": Param(required=True), "OPTIONAL": Param()}

    def test_secrets_are_opaque(self):
        bound = bind(self.SECRETS, {"TOKEN": "s3cr3t"}, secret=True)
        assert isinstance(bound["TOKEN"], Secret)
        assert bound["TOKEN"].reveal() == "s3cr3t"
        assert "s3cr3t" not in repr(bound)
        assert bound["OPTIONAL"] is None
        assert bound.secrets() == [Secret("s3cr3t")]

    def test_missing_secret(self):
        with pytest.raises(MissingRequiredInputError) as exc:
            bind(self.SECRETS, {}, secret=True)
        assert exc.value.key == "TOKEN"

    def test_unknown_secret(self):
        with pytest.raises(UnknownInputError):
            bind(self.SECRETS, {"TOKEN": "x", "OTHER": "y"}, secret=True)

    def test_secret_must_be_text(self):
        with pytest.raises(TypeMismatchError):
            bind(self.SECRETS, {"TOKEN": 123}, secret=True)
