from __future__ import annotations

import json

import pytest

from lms_api.schema_docs import SUPPORTED_RESOURCES, SchemaDocsCache, is_valid_json_schema


@pytest.fixture
def docs() -> SchemaDocsCache:
    return SchemaDocsCache()


def test_course_schema_splits_examples_and_validations(docs):
    document = docs.get_schema("course")
    assert document is not None
    assert document.schema["$schema"] == "http://json-schema.org/draft-07/schema#"
    assert "examples" not in document.schema
    assert "validations" not in document.schema

    course = document.schema["properties"]["course"]
    assert set(course["required"]) >= {"title", "code", "department", "credits"}
    assert course["properties"]["code"]["pattern"] == "^[A-Z]{2,4}[0-9]{3}[A-Z]?$"
    assert "Course code" in course["properties"]["code"]["description"]

    assert len(document.examples) >= 2
    assert all(isinstance(ex["description"], str) and "course" in ex["data"] for ex in document.examples)
    assert document.validations["course.code"]["pattern"]


def test_module_exercise_question_contracts(docs):
    module = docs.get_schema("module")
    assert {"custom", "scorm", "video", "document", "exercise"} <= set(module.schema["properties"]["type"]["enum"])
    assert {"text", "scormPackage", "videoUrl"} <= set(module.schema["properties"]["content"]["properties"])
    assert len({ex["data"]["type"] for ex in module.examples}) > 1

    exercise = docs.get_schema("exercise")
    passing = exercise.schema["properties"]["passingScore"]
    assert (passing["type"], passing["minimum"], passing["maximum"]) == ("number", 0, 100)
    assert all(isinstance(ex["data"]["questions"], list) for ex in exercise.examples)

    question = docs.get_schema("question")
    assert {"multiple_choice", "true_false", "essay", "short_answer", "fill_blank"} <= set(
        question.schema["properties"]["type"]["enum"]
    )
    assert {"text", "isCorrect"} <= set(question.schema["properties"]["options"]["items"]["properties"])
    assert {"multiple_choice", "true_false"} <= {ex["data"]["type"] for ex in question.examples}


@pytest.mark.parametrize("resource", SUPPORTED_RESOURCES)
def test_packaged_schemas_are_draft7_valid(docs, resource):
    assert is_valid_json_schema(docs.get_schema(resource).schema)


def test_cache_returns_same_object_until_cleared(docs):
    first = docs.get_schema("course")
    assert docs.get_schema("course") is first
    docs.clear_cache()
    assert docs.get_schema("course") is not first


@pytest.mark.parametrize(
    "name",
    ["", "../etc/passwd", "course/../module", "Course", "course.schema", "course\n", "enrollment", None, 42],
)
def test_rejects_names_outside_allow_list(docs, name):
    assert docs.get_schema(name) is None


def test_missing_and_malformed_files_yield_none(tmp_path, caplog):
    (tmp_path / "module.schema.json").write_text("{not json", encoding="utf-8")
    docs = SchemaDocsCache(schema_dir=tmp_path)

    assert docs.get_schema("course") is None
    assert docs.get_schema("module") is None
    assert "schema_doc_missing" in caplog.text
    assert "schema_doc_unreadable" in caplog.text


def test_file_written_after_miss_is_picked_up(tmp_path):
    docs = SchemaDocsCache(schema_dir=tmp_path)
    assert docs.get_schema("course") is None
    (tmp_path / "course.schema.json").write_text(
        json.dumps({"$schema": "http://json-schema.org/draft-07/schema#", "type": "object"}),
        encoding="utf-8",
    )
    assert docs.get_schema("course").examples == []


def test_is_valid_json_schema_rules():
    assert is_valid_json_schema({"$schema": "http://json-schema.org/draft-07/schema#", "type": "object"})
    assert not is_valid_json_schema({"type": "object"})
    assert not is_valid_json_schema({"$schema": "http://json-schema.org/draft-07/schema#"})
    assert not is_valid_json_schema({"$schema": "http://json-schema.org/draft-07/schema#", "type": "blob"})
    assert not is_valid_json_schema(["not", "a", "dict"])


def test_ai_schema_routes(client):
    listing = client.get("/api/v2/ai/schemas", headers={"Authorization": ""})
    assert listing.status_code == 200
    assert listing.json()["data"]["resources"] == list(SUPPORTED_RESOURCES)

    course = client.get("/api/v2/ai/schemas/course")
    assert course.status_code == 200
    assert set(course.json()["data"]) == {"schema", "examples", "validations"}

    missing = client.get("/api/v2/ai/schemas/enrollment")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "SCHEMA_NOT_FOUND"


def test_name_check_does_not_rely_on_allow_list(tmp_path):
    (tmp_path / "course\n.schema.json").write_text(
        json.dumps({"$schema": "http://json-schema.org/draft-07/schema#", "type": "object"}),
        encoding="utf-8",
    )
    docs = SchemaDocsCache(schema_dir=tmp_path, resources=("course\n",))
    assert docs.get_schema("course\n") is None
