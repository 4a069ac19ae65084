"""
test_retrieval.py
~~~~~~~~~~~~~~~~~
Schema context construction and defensive parsing of planner output.
"""
import asyncio
import json
import random

from school_assistant.services.retrieval import (
    PlanEntry,
    RetrievalPlanner,
    RowFilter,
    build_schema_context,
    extract_json,
    parse_plan,
)

from conftest import SCHOOL_DATA, FakeGateway


# ─── Schema Context ──────────────────────────────────────────────────────────

class TestSchemaContext:
    def test_headers_only_by_default(self):
        context = build_schema_context(SCHOOL_DATA)
        assert context["SISWA"] == {"headers": ["NISN", "Nama", "Rombel Saat Ini", "Jenis Kelamin"]}
        assert "samples" not in context["GURU"]

    def test_samples_are_bounded(self):
        context = build_schema_context(SCHOOL_DATA, sample_size=2, rng=random.Random(7))
        assert len(context["SISWA"]["samples"]) == 2
        assert len(context["GURU"]["samples"]) == 2
        for row in context["SISWA"]["samples"]:
            assert set(row) == {"NISN", "Nama", "Rombel Saat Ini", "Jenis Kelamin"}

    def test_sample_size_larger_than_sheet(self):
        context = build_schema_context({"GURU": SCHOOL_DATA["GURU"]}, sample_size=10)
        assert len(context["GURU"]["samples"]) == 2

    def test_empty_sources_are_skipped(self):
        context = build_schema_context({"SISWA": SCHOOL_DATA["SISWA"], "KOSONG": ""})
        assert list(context) == ["SISWA"]

    def test_headers_are_trimmed(self):
        context = build_schema_context({"X": "\ufeff Nama , Kelas\nA,7A\n"})
        assert context["X"]["headers"] == ["Nama", "Kelas"]

    def test_colliding_headers_are_trimmed_and_numbered(self):
        context = build_schema_context({"X": "Nama ,Nama,Rombel Saat Ini \nA,B,7A\n"})
        assert context["X"]["headers"] == ["Nama", "Nama_1", "Rombel Saat Ini"]


# ─── JSON Extraction ─────────────────────────────────────────────────────────

class TestExtractJson:
    def test_fenced_block(self):
        assert extract_json('```json\n{"questions": ["a"]}\n```') == {"questions": ["a"]}

    def test_first_value_inside_prose(self):
        assert extract_json('Berikut daftarnya: ["a", "b"] semoga membantu') == ["a", "b"]

    def test_nothing_decodable(self):
        assert extract_json("tidak ada json di sini") is None
        assert extract_json("") is None


# ─── Plan Parsing ────────────────────────────────────────────────────────────

class TestParsePlan:
    def test_searches_wrapper(self):
        raw = json.dumps({"searches": [{"sheetName": "SISWA", "filters": [{"column": "Nama", "value": "Ahmad"}]}]})
        plan = parse_plan(raw)
        assert plan.entries == [PlanEntry("SISWA", (RowFilter("Nama", "Ahmad"),))]

    def test_plan_wrapper_and_source_name(self):
        raw = json.dumps({"plan": [{"sourceName": "GURU", "filters": []}]})
        assert parse_plan(raw).entries == [PlanEntry("GURU")]

    def test_bare_list(self):
        raw = json.dumps([{"sheetName": "SISWA"}])
        assert parse_plan(raw).entries == [PlanEntry("SISWA")]

    def test_code_fence_and_prose(self):
        raw = 'Berikut rencananya:\n```json\n{"searches": [{"sheetName": "SISWA", "filters": []}]}\n```\nSemoga membantu.'
        assert parse_plan(raw).entries == [PlanEntry("SISWA")]

    def test_json_embedded_in_prose_without_fence(self):
        raw = 'Rencana: {"searches": [{"sheetName": "GURU"}]} selesai.'
        assert parse_plan(raw).entries == [PlanEntry("GURU")]

    def test_garbage_is_empty_plan(self):
        assert parse_plan("maaf, saya tidak mengerti").is_empty
        assert parse_plan("").is_empty
        assert parse_plan(None).is_empty
        assert parse_plan('{"searches": "SISWA"}').is_empty

    def test_empty_searches_is_empty_plan(self):
        assert parse_plan('{"searches": []}').is_empty

    def test_malformed_entries_and_filters_are_dropped(self):
        raw = json.dumps({
            "searches": [
                "SISWA",
                {"filters": []},
                {"sheetName": "SISWA", "filters": [
                    {"column": "Nama"},
                    {"column": "Nama", "value": None},
                    {"column": ["Nama"], "value": "x"},
                    {"column": "Aktif", "value": True},
                    "Nama=Ahmad",
                    {"column": "NISN", "value": 1},
                    {"column": " Nama ", "value": " Citra "},
                ]},
            ]
        })
        plan = parse_plan(raw)
        assert plan.entries == [
            PlanEntry("SISWA", (RowFilter("NISN", "1"), RowFilter("Nama", "Citra"))),
        ]


# ─── Planner ─────────────────────────────────────────────────────────────────

def test_planner_sends_schemas_not_data():
    gateway = FakeGateway(json_responses=['{"searches": [{"sheetName": "SISWA", "filters": []}]}'])
    planner = RetrievalPlanner(gateway)
    context = build_schema_context(SCHOOL_DATA)

    plan = asyncio.run(planner.plan("Siapa saja siswa kelas 7A?", context, "gemini-2.5-flash"))

    assert plan.entries == [PlanEntry("SISWA")]
    call = gateway.json_calls[0]
    assert call["stage"] == "retrieval"
    assert call["model"] == "gemini-2.5-flash"
    assert "Siapa saja siswa kelas 7A?" in call["prompt"]
    assert "Rombel Saat Ini" in call["prompt"]
    assert "Ahmad Fauzi" not in call["prompt"]
