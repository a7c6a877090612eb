"""Tests for CSV batch ingestion."""

import pytest

from partnermap.db import batch_store
from partnermap.db.registry_store import registry_store
from partnermap.errors import CSVFormatError, RegistryUnavailableError
from partnermap.models import (
    BatchStatus,
    DataTypeSupported,
    Direction,
    NodeCategory,
    ProtocolSupported,
)
from partnermap.services.csv_ingest import (
    FIELD_COUNT_COLUMN,
    LINE_COLUMN,
    calculate_confidence_score,
    extract_tags,
    normalize_website,
    process_batch_csv,
    read_csv_content,
    sanitize_entity_name,
    sanitize_node_name,
    split_list,
    strip_corporate_suffixes,
    validate_row,
)


class TestSanitization:
    """Tests for row value clean-up."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Acme Hotels Ltd.", "Acme Hotels"),
            ("Acme GmbH", "Acme"),
            ("Acme Pty Ltd", "Acme"),
            ("Acme S.A.", "Acme"),
            ("Acme", "Acme"),
        ],
    )
    def test_strip_corporate_suffixes(self, raw, expected):
        assert strip_corporate_suffixes(raw) == expected

    def test_entity_name_title_cased(self):
        assert sanitize_entity_name("  acme hotels ltd ") == "Acme Hotels"

    def test_entity_name_url_debris_removed(self):
        assert sanitize_entity_name("www.example.com") == "Example"

    def test_node_name_keeps_technical_terms(self):
        assert sanitize_node_name("Acme PMS Inc") == "Acme PMS"

    def test_website_reduced_to_domain(self):
        assert normalize_website("https://www.Acme.com/about") == "acme.com"

    def test_split_list(self):
        assert split_list("PushAPI; PullAPI|LiveSearch,") == ["PushAPI", "PullAPI", "LiveSearch"]
        assert split_list("   ") == []

    def test_extract_tags(self):
        tags = extract_tags("Cloud PMS with REST API, connected to siteminder, 500 hotels")

        assert tags == ["pms", "api", "rest", "500 hotels", "connected to siteminder"]

    def test_confidence_score_clean_row(self):
        assert calculate_confidence_score("Acme", "acme.com", [], False) == 1.0

    def test_confidence_score_penalized_for_duplicates(self):
        score = calculate_confidence_score("Acme", "acme.com", [], True)
        assert score == pytest.approx(0.9)


class TestValidation:
    """Tests for header and row validation."""

    def test_missing_headers(self):
        with pytest.raises(CSVFormatError, match="entity_name"):
            read_csv_content("node_name,website\nAcme,acme.com\n")

    def test_empty_content(self):
        with pytest.raises(CSVFormatError):
            read_csv_content("   ")

    def test_header_only(self, make_csv):
        with pytest.raises(CSVFormatError, match="no data rows"):
            read_csv_content(make_csv())

    def test_headers_normalized(self):
        df = read_csv_content(
            "Node Name,Website,Entity Name,Node Category,Direction\n"
            "Acme PMS,acme.com,Acme,PMS,Supply\n"
        )

        assert "node_name" in df.columns
        assert "notes" in df.columns
        assert df.iloc[0]["notes"] == ""

    def test_line_numbers_skip_blank_lines(self, make_csv):
        df = read_csv_content(
            make_csv(
                "Acme PMS,acme.com,Acme,PMS,Supply,,,,",
                "",
                "Beta CRS,beta.io,Beta,CRS,Demand,,,,",
            )
        )

        assert list(df["node_name"]) == ["Acme PMS", "Beta CRS"]
        assert list(df[LINE_COLUMN]) == [2, 4]

    def test_line_numbers_follow_multiline_values(self, make_csv):
        df = read_csv_content(
            make_csv(
                'Acme PMS,acme.com,Acme,PMS,Supply,"Cloud PMS\nREST API",,,',
                "Beta CRS,beta.io,Beta,CRS,Demand,,,,",
            )
        )

        assert df.iloc[0]["notes"] == "Cloud PMS\nREST API"
        assert list(df[LINE_COLUMN]) == [2, 4]

    def test_long_rows_kept_in_place(self, make_csv):
        df = read_csv_content(
            make_csv(
                "Acme PMS,acme.com,Acme,PMS,Supply,,,,,extra",
                "Beta CRS,beta.io,Beta,CRS,Demand,,,,",
            )
        )

        assert list(df[FIELD_COUNT_COLUMN]) == [10, 0]
        assert list(df[LINE_COLUMN]) == [2, 3]
        assert df.iloc[0]["node_name"] == ""
        assert df.iloc[1]["node_name"] == "Beta CRS"
        assert df.attrs["header_width"] == 9

    def test_row_errors_collected(self):
        row = {
            "node_name": "",
            "website": "acme.com",
            "entity_name": "Acme",
            "node_category": "Spaceship",
            "direction": "Supply",
        }
        errors = validate_row(row, 3)

        assert [e.field for e in errors] == ["node_name", "node_category"]
        assert all(e.row == 3 for e in errors)
        assert errors[1].value == "Spaceship"

    def test_valid_row(self):
        row = {
            "node_name": "Acme PMS",
            "website": "acme.com",
            "entity_name": "Acme",
            "node_category": "BookingEngine",
            "direction": "Supply Switch",
        }
        assert validate_row(row, 2) == []


class TestProcessBatchCSV:
    """Tests for staging a whole upload."""

    async def test_valid_and_invalid_rows(self, make_csv):
        csv = make_csv(
            'Acme PMS,https://www.acme.com,Acme Ltd,PMS,Supply,"Cloud PMS, REST API",'
            'node-1;node-2,PushAPI|Telepathy,Rates;Bookings',
            "Beta CRS,beta.io,Beta,CRS,Demand,,,,",
            "Broken,,Gamma,Unknown,Supply,,,,",
        )
        result = await process_batch_csv(csv, "Test Batch")

        assert result.total_rows == 3
        assert result.valid_rows == 2
        assert result.invalid_rows == 1
        assert {e.field for e in result.validation_errors} == {"website", "node_category"}
        assert all(e.row == 4 for e in result.validation_errors)

        first = result.staging_nodes[0]
        assert first.entity_name == "Acme"
        assert first.website == "acme.com"
        assert first.node_category == NodeCategory.PMS
        assert first.direction == Direction.SUPPLY
        assert first.connect_targets == ["node-1", "node-2"]
        assert first.protocols_supported == [ProtocolSupported.PUSH_API]
        assert first.data_types_supported == [
            DataTypeSupported.RATES,
            DataTypeSupported.BOOKINGS,
        ]
        assert first.original_data["original_entity_name"] == "Acme Ltd"
        assert first.row_number == 2

        batch = await batch_store.get_batch(result.batch_id)
        assert batch.status == BatchStatus.PROCESSED
        assert batch.batch_name == "Test Batch"
        assert batch.total_records == 3
        assert batch.processed_records == 2
        assert batch.error_records == 1
        assert batch.error_report["failed_rows"] == 1
        assert batch.completed_at is not None

    async def test_all_rows_invalid_marks_batch_error(self, make_csv):
        result = await process_batch_csv(make_csv(",acme.com,Acme,PMS,Supply,,,,"))

        assert result.valid_rows == 0
        batch = await batch_store.get_batch(result.batch_id)
        assert batch.status == BatchStatus.ERROR
        assert batch.batch_name.startswith("Import_")

    async def test_unusable_csv_marks_batch_error(self):
        with pytest.raises(CSVFormatError) as exc_info:
            await process_batch_csv("foo,bar\n1,2\n")

        batch = await batch_store.get_batch(exc_info.value.batch_id)
        assert batch.status == BatchStatus.ERROR
        assert "Missing required headers" in batch.error_report["error"]

    async def test_registry_duplicates_flagged(self, make_csv, acme_entity):
        result = await process_batch_csv(
            make_csv("Acme Cloud,acme.com,Acme Hospitality Ltd,PMS,Supply,,,,")
        )

        assert result.duplicate_warnings == 1
        assert result.staging_nodes[0].duplicate_matches == [acme_entity.entity_id]
        assert result.staging_nodes[0].confidence_score < 1.0

    async def test_staging_records_persisted(self, make_csv):
        result = await process_batch_csv(make_csv("Acme PMS,acme.com,Acme,PMS,Supply,,,,"))

        staged = await batch_store.list_staging_records(result.batch_id)
        assert [s.id for s in staged] == [s.id for s in result.staging_nodes]

    async def test_long_rows_reported(self, make_csv):
        csv = make_csv(
            "Acme PMS,acme.com,Acme,PMS,Supply,,,,",
            "Beta CRS,beta.io,Beta,CRS,Demand,,,,,shifted,columns",
            "Gamma CM,gamma.com,Gamma,Channel Manager,Supply,,,,",
        )
        result = await process_batch_csv(csv)

        assert result.total_rows == 3
        assert result.invalid_rows == 1
        assert [s.node_name for s in result.staging_nodes] == ["Acme PMS", "Gamma CM"]
        assert len(result.validation_errors) == 1
        error = result.validation_errors[0]
        assert error.row == 3
        assert error.field == "row"
        assert error.error == "Expected 9 fields, found 11"

        batch = await batch_store.get_batch(result.batch_id)
        assert batch.total_records == 3
        assert batch.error_records == 1

    async def test_long_first_row_reported(self, make_csv):
        result = await process_batch_csv(
            make_csv(
                "Acme PMS,acme.com,Acme,PMS,Supply,,,,,extra",
                "Beta CRS,beta.io,Beta,CRS,Demand,,,,",
            )
        )

        assert result.total_rows == 2
        assert [s.node_name for s in result.staging_nodes] == ["Beta CRS"]
        assert [(e.row, e.field) for e in result.validation_errors] == [(2, "row")]

    async def test_error_rows_after_blank_line(self, make_csv):
        result = await process_batch_csv(
            make_csv(
                "Acme PMS,acme.com,Acme,PMS,Supply,,,,",
                "",
                "Broken,broken.com,Broken,Unknown,Supply,,,,",
            )
        )

        assert result.total_rows == 2
        assert [(e.row, e.field) for e in result.validation_errors] == [(4, "node_category")]

    async def test_failure_after_batch_created_marks_batch_error(self, make_csv, monkeypatch):
        async def unavailable(*args, **kwargs):
            raise RegistryUnavailableError()

        monkeypatch.setattr(registry_store, "list_entities", unavailable)

        with pytest.raises(RegistryUnavailableError):
            await process_batch_csv(make_csv("Acme PMS,acme.com,Acme,PMS,Supply,,,,"))

        [batch] = await batch_store.list_batches()
        assert batch.status == BatchStatus.ERROR
        assert batch.error_report == {"error": "Registry is unavailable"}
        assert batch.completed_at is not None
        assert await batch_store.list_staging_records(batch.batch_id) == []
