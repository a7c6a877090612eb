"""CSV batch ingestion.

Turns an uploaded CSV into a batch of staging records. Rows that fail
validation, including rows with more fields than the header, are reported
and skipped; the batch proceeds with the rest.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from io import StringIO

import pandas as pd

from partnermap.db import batch_store
from partnermap.db.audit_store import append_audit
from partnermap.db.database import transaction
from partnermap.db.registry_store import merge_unique, registry_store
from partnermap.errors import CSVFormatError, IllegalStateTransitionError, PartnerMapError
from partnermap.models import (
    BatchStatus,
    CSVProcessingResult,
    DataTypeSupported,
    Direction,
    Entity,
    Node,
    NodeCategory,
    ProtocolSupported,
    RowValidationError,
    StagingRecordCreate,
)
from partnermap.services.similarity import extract_domain, similarity

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["node_name", "website", "entity_name", "node_category", "direction"]
OPTIONAL_COLUMNS = ["notes", "connect_targets", "protocols_supported", "data_types_supported"]

_VALID_CATEGORIES = {c.value: c for c in NodeCategory}
_VALID_DIRECTIONS = {d.value: d for d in Direction}
_VALID_PROTOCOLS = {p.value: p for p in ProtocolSupported}
_VALID_DATA_TYPES = {d.value: d for d in DataTypeSupported}

_CORPORATE_SUFFIX = re.compile(
    r"[\s,]+(?:ltd|inc|corp|llc|gmbh|s\.?a|b\.?v|ag|plc|pty|limited|incorporated"
    r"|corporation|company|co)\.?$",
    re.IGNORECASE,
)
_WEBSITE_PREFIX = re.compile(r"^(?:https?://)?(?:www\.)?", re.IGNORECASE)
_WEBSITE_TLD = re.compile(r"\.(?:com|net|org|io|co)$", re.IGNORECASE)

_TECH_PATTERNS = [
    re.compile(p)
    for p in (
        r"\bpms\b",
        r"\bcrs\b",
        r"\bchannel manager\b",
        r"\bbooking engine\b",
        r"\bota\b",
        r"\bapi\b",
        r"\bxml\b",
        r"\bjson\b",
        r"\bsoap\b",
        r"\brest\b",
    )
]
_COUNT_PATTERN = re.compile(r"\d+\s*(?:hotels?|properties|rooms?)")
_CONNECTIVITY_PATTERNS = [
    re.compile(r"connected to \w+"),
    re.compile(r"integrates with \w+"),
    re.compile(r"partners with \w+"),
]

# Registry similarity above which a row is flagged as a potential duplicate
ENTITY_DUPLICATE_THRESHOLD = 0.7
NODE_DUPLICATE_THRESHOLD = 0.7
NODE_OWNER_DUPLICATE_THRESHOLD = 0.8


def strip_corporate_suffixes(name: str) -> str:
    """Remove trailing legal-form suffixes such as 'Ltd' or 'GmbH'."""
    cleaned = name.strip()
    while True:
        stripped = _CORPORATE_SUFFIX.sub("", cleaned).strip()
        if stripped == cleaned:
            return cleaned
        cleaned = stripped


def sanitize_entity_name(name: str) -> str:
    """Strip suffixes and URL debris from an organization name and title-case it."""
    cleaned = strip_corporate_suffixes(name).lower()
    cleaned = _WEBSITE_PREFIX.sub("", cleaned)
    cleaned = _WEBSITE_TLD.sub("", cleaned).strip()
    return " ".join(word[:1].upper() + word[1:] for word in cleaned.split())


def sanitize_node_name(name: str) -> str:
    """Strip corporate suffixes only; product terms are kept as written."""
    return strip_corporate_suffixes(name)


def normalize_website(website: str) -> str:
    return extract_domain(website) or ""


def split_list(value: str) -> list[str]:
    """Split a list cell on ',', ';' or '|'."""
    if not value or not value.strip():
        return []
    return [item.strip() for item in re.split(r"[,;|]", value) if item.strip()]


def extract_tags(notes: str) -> list[str]:
    """Pull technology, size and connectivity mentions out of free-text notes."""
    text = notes.lower()
    tags: list[str] = []

    for pattern in _TECH_PATTERNS:
        match = pattern.search(text)
        if match:
            tags.append(match.group(0))

    tags.extend(_COUNT_PATTERN.findall(text))

    for pattern in _CONNECTIVITY_PATTERNS:
        tags.extend(pattern.findall(text))

    return merge_unique([], tags)


def calculate_confidence_score(
    entity_name: str, website: str, tags: list[str], has_duplicates: bool
) -> float:
    """Score how clean and self-contained a staged row looks."""
    score = 1.0

    if has_duplicates:
        score -= 0.3

    if "." in website:
        score += 0.1

    if len(entity_name) > 3 and "unknown" not in entity_name.lower():
        score += 0.1

    if tags:
        score += 0.05 * min(len(tags), 4)

    return max(0.0, min(1.0, score))


def find_potential_duplicates(
    entity_name: str, node_name: str, entities: list[Entity], nodes: list[Node]
) -> list[str]:
    """Ids of registry records that look like the row at first glance."""
    matches = [
        entity.entity_id
        for entity in entities
        if similarity(entity_name, entity.master_entity_name) > ENTITY_DUPLICATE_THRESHOLD
    ]
    matches.extend(
        node.node_id
        for node in nodes
        if similarity(node_name, node.node_name) > NODE_DUPLICATE_THRESHOLD
        or similarity(entity_name, node.entity_name) > NODE_OWNER_DUPLICATE_THRESHOLD
    )
    return matches


# Bookkeeping columns of a parsed upload
LINE_COLUMN = "_line"
FIELD_COUNT_COLUMN = "_field_count"

_BAD_LINE_MARKER = "\x00bad_line"


class _BadLineCollector:
    """Keeps rows with too many fields in place so they can be reported."""

    def __init__(self) -> None:
        self.lines: list[list[str]] = []

    def __call__(self, bad_line: list[str]) -> list[str]:
        self.lines.append(bad_line)
        return [_BAD_LINE_MARKER]


def read_csv_content(csv_content: str) -> pd.DataFrame:
    """Parse CSV text into a frame of strings with normalized headers.

    Every data row carries its 1-based line number (header is line 1) in
    ``LINE_COLUMN``. A row with more fields than the header is kept with
    blank values and its field count in ``FIELD_COUNT_COLUMN``, which is 0
    for every other row. Blank lines are dropped. ``attrs["header_width"]``
    is the number of header fields.
    """
    if not csv_content or not csv_content.strip():
        raise CSVFormatError("CSV content is empty")

    bad_lines = _BadLineCollector()
    try:
        # The header is read as row 0 so an over-long first row is not taken as an index
        raw = pd.read_csv(
            StringIO(csv_content.strip()),
            header=None,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            skip_blank_lines=False,
            engine="python",
            on_bad_lines=bad_lines,
        )
    except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
        raise CSVFormatError(f"Could not parse CSV: {e}") from e

    raw = raw.fillna("")
    header_width = raw.shape[1]

    # Quoted values may span lines, so each record takes 1 + its embedded newlines
    spans = 1 + raw.apply(lambda column: column.str.count("\n")).sum(axis=1)
    field_counts = pd.Series(0, index=raw.index)
    bad_rows = raw.index[raw.iloc[:, 0] == _BAD_LINE_MARKER]
    for position, line in zip(bad_rows, bad_lines.lines):
        spans.at[position] = 1 + sum(value.count("\n") for value in line)
        field_counts.at[position] = len(line)
    raw.loc[bad_rows, raw.columns[0]] = ""
    line_numbers = spans.cumsum() - spans + 1

    df = raw.iloc[1:].copy()
    df.columns = pd.Index(raw.iloc[0]).str.strip().str.lower().str.replace(" ", "_")

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise CSVFormatError(f"Missing required headers: {', '.join(missing)}")

    blank = (df == "").all(axis=1) & (field_counts.iloc[1:] == 0)
    df[LINE_COLUMN] = line_numbers.iloc[1:]
    df[FIELD_COUNT_COLUMN] = field_counts.iloc[1:]
    df = df.loc[~blank].copy()

    if df.empty:
        raise CSVFormatError("CSV has no data rows")

    for column in OPTIONAL_COLUMNS:
        if column not in df.columns:
            df[column] = ""

    df.attrs["header_width"] = header_width
    return df


def validate_row(row: dict[str, str], line_number: int) -> list[RowValidationError]:
    """Return every field problem in one row."""
    errors: list[RowValidationError] = []

    for column in ("node_name", "entity_name", "website"):
        if not row.get(column, "").strip():
            errors.append(
                RowValidationError(
                    row=line_number, field=column, error="Required field", value=row.get(column)
                )
            )

    if row.get("node_category", "").strip() not in _VALID_CATEGORIES:
        errors.append(
            RowValidationError(
                row=line_number,
                field="node_category",
                error=f"Invalid category. Must be one of: {', '.join(_VALID_CATEGORIES)}",
                value=row.get("node_category"),
            )
        )

    if row.get("direction", "").strip() not in _VALID_DIRECTIONS:
        errors.append(
            RowValidationError(
                row=line_number,
                field="direction",
                error=f"Invalid direction. Must be one of: {', '.join(_VALID_DIRECTIONS)}",
                value=row.get("direction"),
            )
        )

    return errors


def sanitize_row(
    row: dict[str, str], line_number: int, entities: list[Entity], nodes: list[Node]
) -> StagingRecordCreate:
    """Build the staging form of a valid row."""
    entity_name = sanitize_entity_name(row["entity_name"])
    node_name = sanitize_node_name(row["node_name"])
    website = normalize_website(row["website"])
    notes = row.get("notes", "").strip()
    tags = extract_tags(notes)
    duplicates = find_potential_duplicates(entity_name, node_name, entities, nodes)

    return StagingRecordCreate(
        node_name=node_name,
        entity_name=entity_name,
        website=website,
        node_category=_VALID_CATEGORIES[row["node_category"].strip()],
        direction=_VALID_DIRECTIONS[row["direction"].strip()],
        notes=notes,
        connect_targets=merge_unique([], split_list(row.get("connect_targets", ""))),
        protocols_supported=[
            _VALID_PROTOCOLS[p]
            for p in merge_unique([], split_list(row.get("protocols_supported", "")))
            if p in _VALID_PROTOCOLS
        ],
        data_types_supported=[
            _VALID_DATA_TYPES[d]
            for d in merge_unique([], split_list(row.get("data_types_supported", "")))
            if d in _VALID_DATA_TYPES
        ],
        extracted_tags=tags,
        confidence_score=calculate_confidence_score(entity_name, website, tags, bool(duplicates)),
        duplicate_matches=duplicates,
        original_data={
            "original_node_name": row["node_name"],
            "original_entity_name": row["entity_name"],
            "original_website": row["website"],
        },
        row_number=line_number,
    )


@dataclass
class _ValidationOutcome:
    valid: list[StagingRecordCreate] = field(default_factory=list)
    errors: list[RowValidationError] = field(default_factory=list)
    invalid_rows: int = 0


def _validate_rows(
    df: pd.DataFrame, entities: list[Entity], nodes: list[Node]
) -> _ValidationOutcome:
    outcome = _ValidationOutcome()
    header_width = df.attrs["header_width"]
    for row in df.to_dict(orient="records"):
        line_number = int(row[LINE_COLUMN])
        field_count = int(row[FIELD_COUNT_COLUMN])
        if field_count:
            row_errors = [
                RowValidationError(
                    row=line_number,
                    field="row",
                    error=f"Expected {header_width} fields, found {field_count}",
                    value=field_count,
                )
            ]
        else:
            row_errors = validate_row(row, line_number)
        if row_errors:
            outcome.errors.extend(row_errors)
            outcome.invalid_rows += 1
            continue
        outcome.valid.append(sanitize_row(row, line_number, entities, nodes))
    return outcome


async def _fail_batch(batch_id: str, error: Exception) -> None:
    """Move a batch that could not be staged from ``pending`` to ``error``."""
    try:
        await batch_store.transition_batch(
            batch_id,
            BatchStatus.PENDING,
            BatchStatus.ERROR,
            error_report={"error": str(error)},
        )
    except PartnerMapError as e:
        logger.error(f"Could not mark batch {batch_id} as failed: {e}")


async def process_batch_csv(csv_content: str, batch_name: str | None = None) -> CSVProcessingResult:
    """Stage a CSV upload as a new batch.

    Raises CSVFormatError when the upload has no usable header or no data
    rows. On that or any other failure after the batch is created, the
    batch is moved to ``error`` before the exception propagates.
    """
    name = batch_name or f"Import_{datetime.now(UTC).date().isoformat()}"
    batch = await batch_store.create_batch(name)
    logger.info(f"Created batch {batch.batch_id} ({name})")

    try:
        return await _stage_upload(batch.batch_id, name, csv_content)
    except CSVFormatError as e:
        e.batch_id = batch.batch_id
        await _fail_batch(batch.batch_id, e)
        logger.warning(f"Batch {batch.batch_id} rejected: {e}")
        raise
    except Exception as e:
        await _fail_batch(batch.batch_id, e)
        logger.error(f"Batch {batch.batch_id} failed while staging: {e}")
        raise


async def _stage_upload(batch_id: str, name: str, csv_content: str) -> CSVProcessingResult:
    df = read_csv_content(csv_content)

    entities = await registry_store.list_entities()
    nodes = await registry_store.list_nodes()
    outcome = _validate_rows(df, entities, nodes)

    total_rows = len(df)
    final_status = BatchStatus.PROCESSED if outcome.valid else BatchStatus.ERROR
    error_report = (
        {
            "validation_errors": [e.model_dump() for e in outcome.errors],
            "failed_rows": outcome.invalid_rows,
        }
        if outcome.errors
        else None
    )

    async with transaction() as db:
        staged = await batch_store.add_staging_records(batch_id, outcome.valid, conn=db)
        moved = await batch_store.transition_batch(
            batch_id,
            BatchStatus.PENDING,
            final_status,
            total_records=total_rows,
            processed_records=len(outcome.valid),
            error_records=outcome.invalid_rows,
            error_report=error_report,
            conn=db,
        )
        if not moved:
            current = await batch_store.get_batch(batch_id, conn=db)
            raise IllegalStateTransitionError(
                batch_id,
                current.status.value if current else "missing",
                final_status.value,
            )
        await append_audit(
            db,
            "BATCH_UPLOAD",
            "batch",
            batch_id,
            batch_id=batch_id,
            payload={
                "batch_name": name,
                "total_rows": total_rows,
                "valid_rows": len(outcome.valid),
            },
        )

    duplicate_warnings = sum(1 for record in staged if record.duplicate_matches)
    logger.info(
        f"Batch {batch_id}: {len(staged)}/{total_rows} rows staged, "
        f"{outcome.invalid_rows} invalid, {duplicate_warnings} duplicate warnings"
    )

    return CSVProcessingResult(
        batch_id=batch_id,
        total_rows=total_rows,
        valid_rows=len(staged),
        invalid_rows=outcome.invalid_rows,
        staging_nodes=staged,
        validation_errors=outcome.errors,
        duplicate_warnings=duplicate_warnings,
    )
