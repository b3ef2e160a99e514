"""CSV tokenizing for bulk access-grant uploads."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field

# purpose: turn uploaded grant spreadsheets into ordered row records without domain lookups
# status: active

USER_EMAIL = "user_email"
SYSTEM_NAME = "system_name"
INSTANCE_NAME = "instance_name"
ACCESS_TIER_NAME = "access_tier_name"
NOTES = "notes"

REQUIRED_COLUMNS = (USER_EMAIL, SYSTEM_NAME, ACCESS_TIER_NAME)
OPTIONAL_COLUMNS = (INSTANCE_NAME, NOTES)
ALL_COLUMNS = (USER_EMAIL, SYSTEM_NAME, INSTANCE_NAME, ACCESS_TIER_NAME, NOTES)

TEMPLATE_EXAMPLE_ROW = (
    "john.doe@example.com",
    "GitHub",
    "Production",
    "Admin",
    "Approved by manager",
)


@dataclass(frozen=True)
class GrantRow:
    """One uploaded row; blank optional cells are ``None``, never missing."""

    row_number: int
    user_email: str
    system_name: str
    access_tier_name: str
    instance_name: str | None = None
    notes: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {
            USER_EMAIL: self.user_email,
            SYSTEM_NAME: self.system_name,
            INSTANCE_NAME: self.instance_name,
            ACCESS_TIER_NAME: self.access_tier_name,
            NOTES: self.notes,
        }

    @classmethod
    def from_mapping(cls, row_number: int, values: dict) -> "GrantRow":
        """Build a row from a column mapping, trimming text and nulling blanks."""

        def _text(column: str) -> str:
            value = values.get(column)
            return str(value).strip() if value is not None else ""

        def _optional(column: str) -> str | None:
            return _text(column) or None

        return cls(
            row_number=row_number,
            user_email=_text(USER_EMAIL),
            system_name=_text(SYSTEM_NAME),
            access_tier_name=_text(ACCESS_TIER_NAME),
            instance_name=_optional(INSTANCE_NAME),
            notes=_optional(NOTES),
        )


@dataclass
class CsvParseResult:
    rows: list[GrantRow] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def split_fields(line: str) -> list[str]:
    """Split one CSV line honouring double quotes and ``""`` escapes."""

    reader = csv.reader([line], skipinitialspace=True)
    fields = next(reader, [])
    if not fields:
        return [""]
    return [value.strip() for value in fields]


def _normalise_lines(text: str) -> list[str]:
    normalised = text.replace("\r\n", "\n").replace("\r", "\n")
    return [line.strip() for line in normalised.split("\n") if line.strip()]


def parse_csv(text: str) -> CsvParseResult:
    """Parse bulk-upload CSV text into rows plus row-numbered errors.

    Row numbers are 1-indexed over non-blank lines with the header as row 1.
    A missing required column aborts the whole parse; a data row that cannot
    be tokenized or whose field count differs from the header is reported
    and skipped.
    """

    result = CsvParseResult()
    lines = _normalise_lines(text or "")
    if not lines:
        return result

    try:
        headers = [header.lower() for header in split_fields(lines[0])]
    except csv.Error as exc:
        result.errors.append(f"Row 1: Malformed header ({exc})")
        return result
    missing = [column for column in REQUIRED_COLUMNS if column not in headers]
    if missing:
        result.errors.append(f"Missing required columns: {', '.join(missing)}")
        return result

    unknown = [header for header in headers if header not in ALL_COLUMNS]
    if unknown:
        result.warnings.append(f"Warning: Unknown columns will be ignored: {', '.join(unknown)}")

    column_index: dict[str, int] = {}
    for index, header in enumerate(headers):
        if header in ALL_COLUMNS and header not in column_index:
            column_index[header] = index

    for offset, line in enumerate(lines[1:], start=2):
        try:
            values = split_fields(line)
        except csv.Error as exc:
            result.errors.append(f"Row {offset}: Malformed row ({exc})")
            continue
        if len(values) != len(headers):
            result.errors.append(
                f"Row {offset}: Column count mismatch (expected {len(headers)}, got {len(values)})"
            )
            continue
        mapping = {column: values[index] for column, index in column_index.items()}
        result.rows.append(GrantRow.from_mapping(offset, mapping))
    return result


def generate_csv_template() -> str:
    """Return the downloadable upload template: header plus one example row."""

    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(ALL_COLUMNS)
    writer.writerow(TEMPLATE_EXAMPLE_ROW)
    return output.getvalue()
