"""Tests for canonical forms, digests and document parsing."""
import pytest

from reuseci.dsl import definition, job, param, sh, uses
from reuseci.errors import InvalidDefinitionError
from reuseci.model import Bundle, BundleCall, Definition
from reuseci.serialize import canonical_json, content_digest, item_from_dict, item_to_dict


def _doc(**overrides):
    doc = {
        "kind": "definition",
        "location": "acme/ci",
        "version": "v1",
        "inputs": {"python": {"type": "string", "default": "3.12"}},
        "secrets": ["TOKEN"],
        "jobs": {
            "lint": {"steps": [{"name": "ruff", "run": "ruff check ."}]},
            "test": {
                "needs": "lint",
                "timeout-minutes": 2,
                "steps": [{"uses": "acme/pytest@v1", "with": {"python": "${{ inputs.python }}"}}],
            },
        },
    }
    doc.update(overrides)
    return doc


def test_canonical_json_is_key_order_independent():
    assert canonical_json({"b": 1, "a": [1, 2]}) == canonical_json({"a": [1, 2], "b": 1})
    assert canonical_json({"a": 1}) == '{"a":1}'


def test_digest_format_and_stability():
    item = item_from_dict(_doc())
    digest = content_digest(item)
    assert digest.startswith("sha256:")
    assert len(digest) == len("sha256:") + 64
    assert content_digest(item_from_dict(_doc())) == digest


def test_digest_depends_on_job_order():
    a = item_from_dict(_doc())
    jobs = dict(reversed(list(_doc()["jobs"].items())))
    b = item_from_dict(_doc(jobs=jobs))
    assert content_digest(a) != content_digest(b)


def test_parse_definition_document():
    d = item_from_dict(_doc())
    assert isinstance(d, Definition)
    assert [j.name for j in d.jobs] == ["lint", "test"]
    test = d.job("test")
    assert test.needs == ["lint"]
    assert test.timeout == 120
    call = test.steps[0]
    assert isinstance(call, BundleCall)
    assert str(call.uses) == "acme/pytest@v1"
    assert call.name == "acme/pytest@v1"
    assert d.secrets["TOKEN"].required is True
    assert d.inputs["python"].default == "3.12"


def test_jobs_as_list_and_conditions():
    d = item_from_dict(
        _doc(
            jobs=[
                {"name": "a", "steps": [{"run": "echo hi"}]},
                {"name": "b", "needs": ["a"], "if": "always", "steps": [{"run": "echo bye"}]},
            ]
        )
    )
    assert d.job("b").condition == "always"
    assert d.job("a").steps[0].name == "Run echo hi"


def test_item_round_trip_keeps_digest():
    d = item_from_dict(_doc())
    again = item_from_dict(item_to_dict(d))
    assert again == d
    assert content_digest(again) == content_digest(d)


def test_dsl_and_document_agree():
    from_doc = item_from_dict(_doc())
    from_dsl = definition(
        "acme/ci@v1",
        job("lint", sh("ruff", "ruff check .")),
        job("test", uses("acme/pytest@v1", python="${{ inputs.python }}"), needs=["lint"], timeout=120),
        inputs={"python": param(default="3.12")},
        secrets={"TOKEN": param(required=True)},
    )
    assert content_digest(from_dsl) == content_digest(from_doc)


def test_parse_bundle_document():
    b = item_from_dict(
        {
            "kind": "bundle",
            "location": "acme/pytest",
            "version": "v1",
            "inputs": {"python": "string"},
            "steps": [{"name": "test", "run": "python${{ inputs.python }} -m pytest", "env": {"CI": True}}],
        }
    )
    assert isinstance(b, Bundle)
    assert b.inputs["python"].type == "string"
    assert b.steps[0].env == {"CI": "True"}


@pytest.mark.parametrize(
    "doc, fragment",
    [
        ({"kind": "pipeline"}, "kind"),
        (_doc(extra=1), "unknown document keys"),
        (_doc(steps=[]), "jobs"),
        (_doc(jobs={"a": {"steps": [{"run": "x", "uses": "acme/b@v1"}]}}), "either"),
        (_doc(jobs={"a": {"steps": [{"name": "nothing"}]}}), "'run' or 'uses'"),
        (_doc(jobs={"a": {"stepz": []}}), "unknown job"),
        (_doc(inputs=["x"]), "mapping"),
    ],
)
def test_invalid_documents(doc, fragment):
    with pytest.raises(InvalidDefinitionError) as exc:
        item_from_dict(doc, source="ci.yaml")
    assert fragment in exc.value.message
    assert exc.value.details.get("source") == "ci.yaml"
