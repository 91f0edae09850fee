"""
Tests for export bundles, import preview and import planning.
"""

import json
from datetime import datetime

import pytest

from loopflow.config import Config, SharingConfig
from loopflow.models.sharing import ExportOptions, ImportOptions
from loopflow.services.sharing import SharingService, parse_bundle
from loopflow.utils.exceptions import BundleVersionError, ConfigurationError, ValidationError

SOURCE_HASH = "aaaa1111"
TARGET_HASH = "bbbb2222"
EXPORTED_AT = datetime(2024, 2, 1, 9, 0)
IMPORTED_AT = datetime(2024, 3, 1, 9, 0)


@pytest.fixture
def sharing(config) -> SharingService:
    return SharingService(config=config)


@pytest.fixture
def source_insights(make_insight):
    """A links to B; C is unrelated."""
    a = make_insight(
        "aaaaaa",
        "use retries for flaky network calls",
        tags=["reliability"],
        links=["INS-20240115-bbbbbb"],
    )
    b = make_insight("bbbbbb", "back off exponentially between attempts", tags=["network"])
    c = make_insight("cccccc", "pin the linter version", type="process", tags=["tooling"])
    return [a, b, c]


@pytest.fixture
def export(sharing, source_insights):
    return sharing.create_export_bundle(
        source_insights,
        "source-repo",
        SOURCE_HASH,
        ExportOptions(tags=["reliability"], include_links=True, exported_at=EXPORTED_AT),
    )


def _sequential_ids(*ids):
    """ID generator handing out the given IDs in order."""
    remaining = list(ids)

    def generate(taken: set[str]) -> str:
        candidate = remaining.pop(0)
        while candidate in taken:
            candidate = remaining.pop(0)
        return candidate

    return generate


@pytest.mark.unit
class TestExport:
    """Tests for create_export_bundle."""

    def test_tag_selection_with_links(self, export):
        """Test the tagged insight is exported together with its link target."""
        assert export.included_ids == ["INS-20240115-aaaaaa", "INS-20240115-bbbbbb"]
        assert export.linked_ids_added == ["INS-20240115-bbbbbb"]
        assert export.excluded_ids == ["INS-20240115-cccccc"]

    def test_bundle_fields(self, export, source_insights):
        """Test bundle metadata and per-insight provenance."""
        bundle = export.bundle

        assert bundle.version == "1.0"
        assert bundle.exported_at == "2024-02-01T09:00:00.000000"
        assert bundle.source_repo.name == "source-repo"
        assert bundle.metadata.total_count == 2
        first = bundle.insights[0]
        assert first.original_id == "INS-20240115-aaaaaa"
        assert first.exported_from_repo == SOURCE_HASH
        assert first.content_hash == source_insights[0].content_hash

    def test_without_links(self, sharing, source_insights):
        """Test link targets are not added when include_links is off."""
        result = sharing.create_export_bundle(
            source_insights, "r", SOURCE_HASH, ExportOptions(tags=["reliability"], include_links=False)
        )

        assert result.included_ids == ["INS-20240115-aaaaaa"]
        assert result.linked_ids_added == []

    def test_type_filter(self, sharing, source_insights):
        """Test type filters accept alternative spellings."""
        result = sharing.create_export_bundle(
            source_insights, "r", SOURCE_HASH, ExportOptions(types=["Process"])
        )

        assert result.included_ids == ["INS-20240115-cccccc"]

    def test_no_filters_exports_everything(self, sharing, source_insights):
        """Test an unfiltered export includes every insight once."""
        result = sharing.create_export_bundle(source_insights, "r", SOURCE_HASH, ExportOptions())

        assert len(result.included_ids) == 3
        assert result.linked_ids_added == []

    def test_wire_format(self, export):
        """Test the JSON layout and that export_reason is omitted when unset."""
        data = json.loads(export.bundle.to_json())

        assert set(data) == {"version", "exported_at", "source_repo", "insights", "metadata"}
        assert data["metadata"] == {"total_count": 2}
        assert parse_bundle(data) == export.bundle

    def test_unsupported_configured_version(self, source_insights):
        """Test a misconfigured bundle version raises."""
        service = SharingService(config=Config(sharing=SharingConfig(bundle_version="9.9")))

        with pytest.raises(ConfigurationError):
            service.create_export_bundle(source_insights, "r", SOURCE_HASH)


@pytest.mark.unit
class TestParseBundle:
    """Tests for parse_bundle."""

    def test_round_trip_text(self, export):
        """Test JSON text parses back into the same bundle."""
        assert parse_bundle(export.bundle.to_json()) == export.bundle

    def test_malformed_json(self):
        """Test unparseable text raises ValidationError."""
        with pytest.raises(ValidationError):
            parse_bundle("{nope")

    def test_not_an_object(self):
        """Test non-object bundles raise ValidationError."""
        with pytest.raises(ValidationError):
            parse_bundle("[1, 2]")

    @pytest.mark.parametrize("version", ["2.0", None, 1.0])
    def test_unknown_version(self, export, version):
        """Test missing or unknown versions raise BundleVersionError."""
        data = export.bundle.to_dict()
        data["version"] = version

        with pytest.raises(BundleVersionError):
            parse_bundle(data)

    def test_missing_fields(self, export):
        """Test shape errors carry field paths."""
        data = export.bundle.to_dict()
        del data["insights"][0]["content"]

        with pytest.raises(ValidationError) as exc_info:
            parse_bundle(data)

        assert exc_info.value.errors[0]["field"] == "insights.0.content"

    def test_unknown_type(self, export):
        """Test unknown insight types are rejected."""
        data = export.bundle.to_dict()
        data["insights"][1]["type"] = "opinion"

        with pytest.raises(ValidationError) as exc_info:
            parse_bundle(data)

        assert exc_info.value.errors[0]["field"] == "insights.1.type"

    def test_identical_repeats_collapse(self, export):
        """Test the same record repeated under one original_id is kept once."""
        data = export.bundle.to_dict()
        data["insights"].append(dict(data["insights"][0]))

        bundle = parse_bundle(data)

        assert [i.original_id for i in bundle.insights] == [
            "INS-20240115-aaaaaa",
            "INS-20240115-bbbbbb",
        ]

    def test_repeats_with_braces_in_id_collapse(self, export):
        """Test original IDs containing format braces collapse like any other."""
        data = export.bundle.to_dict()
        data["insights"] = [dict(data["insights"][0], original_id="ID{0}{name}")] * 2

        bundle = parse_bundle(data)

        assert [i.original_id for i in bundle.insights] == ["ID{0}{name}"]

    def test_differing_repeats_rejected(self, export):
        """Test the same original_id with different content is rejected."""
        data = export.bundle.to_dict()
        repeat = dict(data["insights"][0])
        repeat["content"] = "something else entirely"
        data["insights"].append(repeat)

        with pytest.raises(ValidationError):
            parse_bundle(data)


@pytest.mark.unit
class TestImportPlanning:
    """Tests for preview_import and create_import_plan."""

    def test_into_empty_store(self, sharing, export):
        """Test everything is new and links are remapped to fresh IDs."""
        preview = sharing.preview_import(export.bundle, [], TARGET_HASH)
        plan = sharing.create_import_plan(
            preview,
            TARGET_HASH,
            _sequential_ids("INS-20240301-new001", "INS-20240301-new002"),
            ImportOptions(now=IMPORTED_AT),
        )

        assert len(preview.new_insights) == 2
        assert preview.same_repository is False
        assert [i.id for i in plan.insights_to_create] == [
            "INS-20240301-new001",
            "INS-20240301-new002",
        ]
        created_a = plan.insights_to_create[0]
        assert created_a.links == ["INS-20240301-new002"]
        assert created_a.source.original_id == "INS-20240115-aaaaaa"
        assert created_a.source.repo == SOURCE_HASH
        assert created_a.created_at == datetime(2024, 1, 15, 12, 0)
        assert created_a.updated_at == IMPORTED_AT

    def test_duplicate_skipped(self, sharing, export, make_insight):
        """Test an insight with the same content under another ID is a duplicate."""
        existing = make_insight("xxxxxx", "use retries for flaky network calls")

        preview = sharing.preview_import(export.bundle, [existing], TARGET_HASH)
        plan = sharing.create_import_plan(
            preview, TARGET_HASH, _sequential_ids("INS-20240301-new001")
        )

        assert [m.insight.original_id for m in preview.duplicates] == ["INS-20240115-aaaaaa"]
        assert preview.duplicates[0].existing_id == existing.id
        assert [m.insight.original_id for m in plan.skipped_duplicates] == ["INS-20240115-aaaaaa"]
        assert plan.link_remapping["INS-20240115-aaaaaa"] == existing.id
        assert [i.source.original_id for i in plan.insights_to_create] == ["INS-20240115-bbbbbb"]

    def test_conflict_skipped_and_links_map_to_existing(self, sharing, export, make_insight):
        """Test same ID with different content is a conflict and links resolve to the existing record."""
        existing_b = make_insight("bbbbbb", "never retry writes")

        preview = sharing.preview_import(export.bundle, [existing_b], TARGET_HASH)
        plan = sharing.create_import_plan(
            preview, TARGET_HASH, _sequential_ids("INS-20240301-new001")
        )

        assert [m.insight.original_id for m in preview.conflicts] == ["INS-20240115-bbbbbb"]
        assert preview.conflicts[0].existing_hash == existing_b.content_hash
        assert [m.insight.original_id for m in plan.skipped_conflicts] == ["INS-20240115-bbbbbb"]
        assert plan.link_remapping["INS-20240115-bbbbbb"] == existing_b.id
        assert len(plan.insights_to_create) == 1
        assert plan.insights_to_create[0].links == [existing_b.id]

    def test_duplicates_imported_when_not_skipped(self, sharing, export, make_insight):
        """Test turning off skip_duplicates creates a fresh copy."""
        existing = make_insight("xxxxxx", "use retries for flaky network calls")

        preview = sharing.preview_import(export.bundle, [existing], TARGET_HASH)
        plan = sharing.create_import_plan(
            preview,
            TARGET_HASH,
            _sequential_ids("INS-20240301-new001", "INS-20240301-new002"),
            ImportOptions(skip_duplicates=False),
        )

        assert plan.skipped_duplicates == []
        assert len(plan.insights_to_create) == 2

    def test_unmappable_links_dropped(self, sharing, make_insight):
        """Test links that resolve nowhere are reported and dropped."""
        lonely = make_insight("aaaaaa", "orphaned advice", links=["INS-20230101-gone00"])
        bundle = sharing.create_export_bundle([lonely], "r", SOURCE_HASH).bundle

        preview = sharing.preview_import(bundle, [], TARGET_HASH)
        plan = sharing.create_import_plan(preview, TARGET_HASH, _sequential_ids("INS-20240301-new001"))

        assert [(u.source_id, u.target_id) for u in preview.unmappable_links] == [
            ("INS-20240115-aaaaaa", "INS-20230101-gone00")
        ]
        assert plan.dropped_links == preview.unmappable_links
        assert plan.insights_to_create[0].links == []

    def test_links_to_existing_ids_kept(self, sharing, make_insight):
        """Test links to records already in the target survive unchanged."""
        shared = make_insight("ssssss", "shared knowledge")
        linking = make_insight("aaaaaa", "builds on shared knowledge", links=[shared.id])
        bundle = sharing.create_export_bundle(
            [linking], "r", SOURCE_HASH, ExportOptions(include_links=False)
        ).bundle

        preview = sharing.preview_import(bundle, [shared], TARGET_HASH)
        plan = sharing.create_import_plan(preview, TARGET_HASH, _sequential_ids("INS-20240301-new001"))

        assert preview.unmappable_links == []
        assert plan.insights_to_create[0].links == [shared.id]

    def test_generated_ids_avoid_existing(self, sharing, export, make_insight):
        """Test fresh IDs never collide with the store or with each other."""
        taken = make_insight("new001", "unrelated", created=IMPORTED_AT)

        preview = sharing.preview_import(export.bundle, [taken], TARGET_HASH)
        plan = sharing.create_import_plan(
            preview,
            TARGET_HASH,
            _sequential_ids("INS-20240301-new001", "INS-20240301-new002", "INS-20240301-new003"),
        )

        assert [i.id for i in plan.insights_to_create] == [
            "INS-20240301-new002",
            "INS-20240301-new003",
        ]

    def test_default_generator(self, sharing, export):
        """Test default IDs are well formed and dated at import time."""
        preview = sharing.preview_import(export.bundle, [], TARGET_HASH)
        plan = sharing.create_import_plan(preview, TARGET_HASH, options=ImportOptions(now=IMPORTED_AT))

        ids = [i.id for i in plan.insights_to_create]
        assert len(set(ids)) == 2
        assert all(i.startswith("INS-20240301-") for i in ids)

    def test_same_repository(self, sharing, export):
        """Test importing into the exporting repository is flagged."""
        preview = sharing.preview_import(export.bundle, [], SOURCE_HASH)

        assert preview.same_repository is True


@pytest.mark.integration
@pytest.mark.asyncio
class TestApplyImportPlan:
    """Tests for apply_import_plan."""

    async def test_apply_is_idempotent(self, sharing, export, store):
        """Test re-applying a plan creates nothing new."""
        preview = sharing.preview_import(export.bundle, [], TARGET_HASH)
        plan = sharing.create_import_plan(preview, TARGET_HASH)

        first = await sharing.apply_import_plan(store, plan)
        second = await sharing.apply_import_plan(store, plan)

        assert len(first.created) == 2
        assert second.created == []
        assert second.skipped == first.created
        assert await store.count_insights() == 2

    async def test_reimport_finds_duplicates(self, sharing, export, store):
        """Test importing the same bundle twice skips everything the second time."""
        first_plan = sharing.create_import_plan(
            sharing.preview_import(export.bundle, [], TARGET_HASH), TARGET_HASH
        )
        await sharing.apply_import_plan(store, first_plan)

        existing = await store.query_insights(limit=None)
        preview = sharing.preview_import(export.bundle, existing, TARGET_HASH)

        assert len(preview.duplicates) == 2
        assert preview.new_insights == []
