"""Tests for the type lattice, schema inference and value conversion."""

import itertools
import random

import pytest
from pydantic import ValidationError

from core.errors import ConversionError
from core.schema import (
    TYPE_ORDER,
    ColumnSchema,
    ExtractedTable,
    InferredType,
    TableSchema,
    join,
    join_all,
)
from core.type_inference import (
    ColumnProfile,
    classify_value,
    convert_value,
    infer_schema,
    infer_table,
    normalize_date,
    sanitize_column_name,
    unique_column_names,
)


class TestTypeLattice:
    """Join must be a least upper bound over the total order"""

    def test_join_is_commutative(self):
        """Test join commutativity"""
        for a, b in itertools.product(TYPE_ORDER, repeat=2):
            assert join(a, b) == join(b, a)

    def test_join_is_associative(self):
        """Test join associativity"""
        for a, b, c in itertools.product(TYPE_ORDER, repeat=3):
            assert join(join(a, b), c) == join(a, join(b, c))

    def test_join_is_idempotent(self):
        """Test join idempotence"""
        for a in TYPE_ORDER:
            assert join(a, a) is a

    def test_join_picks_more_general_type(self):
        """Test join picks the more general type"""
        assert join(InferredType.INT, InferredType.BIGINT) is InferredType.BIGINT
        assert join(InferredType.BOOLEAN, InferredType.INT) is InferredType.INT
        assert join(InferredType.FLOAT, InferredType.VARCHAR) is InferredType.VARCHAR
        assert join(InferredType.TEXT, InferredType.DATE) is InferredType.TEXT

    def test_join_all_empty(self):
        """Test join of no types"""
        assert join_all([]) is None
        assert join_all([InferredType.DATE, InferredType.INT, InferredType.BOOLEAN]) is InferredType.INT


class TestClassifyValue:

    @pytest.mark.parametrize("value,expected", [
        ("true", InferredType.BOOLEAN),
        ("No", InferredType.BOOLEAN),
        ("42", InferredType.INT),
        ("-7", InferredType.INT),
        ("1,234,567", InferredType.INT),
        ("2147483647", InferredType.INT),
        ("2147483648", InferredType.BIGINT),
        ("-2147483649", InferredType.BIGINT),
        ("3.14", InferredType.FLOAT),
        ("1,234.5", InferredType.FLOAT),
        ("2023-01-15", InferredType.DATE),
        ("15/01/2023", InferredType.DATE),
        ("2023-01-15 10:30:00", InferredType.TIMESTAMP),
        ("2023-01-15T10:30", InferredType.TIMESTAMP),
        ("hello world", InferredType.VARCHAR),
        ("x" * 256, InferredType.TEXT),
    ])
    def test_classification(self, value, expected):
        """Test single value classification"""
        assert classify_value(value) is expected


class TestInferSchema:

    def test_name_age_scenario(self):
        """Empty rows are removed at extraction; inference sees one data row"""
        table = ExtractedTable(headers=["Name", "Age"], rows=[["John", "30"]])
        inferred = infer_table(table)

        assert inferred.schema.describe() == [
            {"name": "name", "type": "VARCHAR", "maxLength": 255},
            {"name": "age", "type": "INT"},
        ]
        assert inferred.rows == [{"name": "John", "age": 30}]

    def test_widest_value_wins_for_whole_column(self):
        """Test widest value decides the column type"""
        schema = infer_schema(["Population"], [["30"], ["40"], ["2147483648"]])
        assert schema.columns[0].type is InferredType.BIGINT

    def test_order_independence(self):
        """Test row order does not change the schema"""
        rows = [["30"], ["yes"], ["3.5"], ["2023-01-01"], ["7"]]
        expected = infer_schema(["value"], rows)
        rng = random.Random(1234)
        for _ in range(20):
            shuffled = list(rows)
            rng.shuffle(shuffled)
            assert infer_schema(["value"], shuffled) == expected
        assert expected.columns[0].type is InferredType.FLOAT

    def test_profile_merge_matches_single_pass(self):
        """Test merged profiles equal one pass"""
        values = ["1", "2147483648", "", "N/A", "12"]
        whole = ColumnProfile("n")
        for value in values:
            whole.observe(value)

        left, right = ColumnProfile("n"), ColumnProfile("n")
        for value in values[:2]:
            left.observe(value)
        for value in values[2:]:
            right.observe(value)

        assert left.merge(right) == whole
        assert right.merge(left).type is whole.type

    def test_all_null_column_defaults_to_varchar(self):
        """Test all-null column"""
        schema = infer_schema(["Notes"], [["-"], ["N/A"], [""]])
        assert schema.columns[0].type is InferredType.VARCHAR
        assert schema.columns[0].max_length == 255

    def test_long_varchar_keeps_observed_length(self):
        """Test long varchar length"""
        schema = infer_schema(["a", "b"], [["x" * 200, "y" * 300]])
        assert schema.columns[0].max_length == 255
        assert schema.columns[1].type is InferredType.TEXT
        assert schema.columns[1].max_length is None

    def test_column_order_matches_headers(self):
        """Test column order follows headers"""
        schema = infer_schema(["Zeta", "Alpha", "Mid"], [["1", "2", "3"]])
        assert schema.column_names == ("zeta", "alpha", "mid")


class TestColumnNames:

    @pytest.mark.parametrize("header,expected", [
        ("Country Name", "country_name"),
        ("  GDP (US$)  ", "gdp_us"),
        ("2023 Population", "col_2023_population"),
        ("Rank #", "rank_"),
        ("", ""),
    ])
    def test_sanitize(self, header, expected):
        """Test header sanitization"""
        assert sanitize_column_name(header) == expected

    def test_sanitize_truncates_long_names(self):
        """Test long names are truncated"""
        assert len(sanitize_column_name("a" * 100)) == 63

    def test_collisions_get_suffixes(self):
        """Test duplicate names get suffixes"""
        assert unique_column_names(["Name", "name", "NAME"]) == ["name", "name_2", "name_3"]

    def test_implicit_columns_are_reserved(self):
        """Test implicit column names are reserved"""
        assert unique_column_names(["ID", "Created At"]) == ["id_2", "created_at_2"]

    def test_blank_headers_are_positional(self):
        """Test blank headers get positional names"""
        assert unique_column_names(["Name", "", "%%"]) == ["name", "column_2", "column_3"]


class TestConvertValue:

    def test_null_sentinels(self):
        """Test null sentinels convert to None"""
        for value in ("", "-", "N/A", "  ", None):
            assert convert_value(value, InferredType.INT) is None

    def test_numbers(self):
        """Test numeric conversion"""
        assert convert_value("1,234", InferredType.INT) == 1234
        assert convert_value("2147483648", InferredType.BIGINT) == 2147483648
        assert convert_value("12", InferredType.FLOAT) == 12.0
        assert convert_value("1,234.5", InferredType.FLOAT) == 1234.5

    def test_booleans(self):
        """Test boolean conversion"""
        assert convert_value("Yes", InferredType.BOOLEAN) is True
        assert convert_value("false", InferredType.BOOLEAN) is False

    def test_dates_are_normalized(self):
        """Test date normalization"""
        assert convert_value("15/01/2023", InferredType.DATE) == "2023-01-15"
        assert convert_value("2023-01-15", InferredType.DATE) == "2023-01-15"
        assert convert_value("2023-01-15 10:30:00", InferredType.TIMESTAMP) == "2023-01-15 10:30:00"

    def test_mismatch_raises_conversion_error(self):
        """Test mismatched cell raises ConversionError"""
        with pytest.raises(ConversionError) as exc_info:
            convert_value("yes", InferredType.INT, column="age")
        assert exc_info.value.column == "age"
        assert exc_info.value.value == "yes"

    def test_impossible_calendar_values_are_rejected(self):
        """ISO-shaped dates and timestamps must name a real day and time"""
        with pytest.raises(ConversionError):
            convert_value("2023-02-30", InferredType.DATE, column="updated")
        with pytest.raises(ConversionError):
            convert_value("2023-01-15 25:99", InferredType.TIMESTAMP, column="joined")
        assert convert_value("2023-01-15T10:30", InferredType.TIMESTAMP) == "2023-01-15T10:30"

    def test_unparsed_cells_become_null(self):
        """A cell that does not fit its column is stored as None and counted"""
        table = ExtractedTable(headers=["flag"], rows=[["yes"], ["12"]], index=3)

        inferred = infer_table(table)

        assert inferred.index == 3
        assert inferred.schema.column("flag").type is InferredType.INT
        assert inferred.rows == [{"flag": None}, {"flag": 12}]
        assert inferred.unparsed_cells == 1

    def test_year_column_with_stray_date_keeps_table(self):
        """One full date among years does not discard the other rows"""
        table = ExtractedTable(headers=["Year"], rows=[["2020"], ["2021"], ["2021-05-01"]])

        inferred = infer_table(table)

        assert inferred.rows == [{"year": 2020}, {"year": 2021}, {"year": None}]
        assert inferred.unparsed_cells == 1

    def test_invalid_dates_in_date_column_become_null(self):
        """Impossible dates and timestamps in typed columns are counted as unparsed"""
        table = ExtractedTable(
            headers=["updated", "joined"],
            rows=[["2023-01-15", "2023-01-15 10:30"], ["2023-02-30", "2023-01-15 25:99"]],
        )

        inferred = infer_table(table)

        assert [c.type for c in inferred.schema.columns] == [InferredType.DATE, InferredType.TIMESTAMP]
        assert inferred.rows[0] == {"updated": "2023-01-15", "joined": "2023-01-15 10:30"}
        assert inferred.rows[1] == {"updated": None, "joined": None}
        assert inferred.unparsed_cells == 2


class TestNormalizeDate:

    def test_day_first(self):
        """Test day-first date"""
        assert normalize_date("05/04/2021") == "2021-04-05"

    def test_month_first_fallback(self):
        """Test month-first fallback"""
        assert normalize_date("12/31/2021") == "2021-12-31"

    def test_two_digit_year_pivot(self):
        """Test two-digit year pivot"""
        assert normalize_date("01-02-68") == "2068-02-01"
        assert normalize_date("01-02-69") == "1969-02-01"

    def test_impossible_date(self):
        """Test impossible date"""
        with pytest.raises(ValueError):
            normalize_date("31/31/2021")

    def test_other_shapes_pass_through(self):
        """Test other shapes pass through"""
        assert normalize_date("2021-04-05") == "2021-04-05"


class TestSchemaModels:

    def test_varchar_defaults_length(self):
        """Test default varchar length"""
        column = ColumnSchema(name="city", type=InferredType.VARCHAR)
        assert column.max_length == 255

    def test_max_length_only_on_varchar(self):
        """Test max_length only on varchar"""
        with pytest.raises(ValidationError):
            ColumnSchema(name="age", type=InferredType.INT, maxLength=10)

    def test_duplicate_names_rejected(self):
        """Test duplicate column names"""
        with pytest.raises(ValidationError):
            TableSchema(columns=(
                ColumnSchema(name="a", type=InferredType.INT),
                ColumnSchema(name="a", type=InferredType.FLOAT),
            ))

    def test_extracted_rows_are_aligned_to_headers(self):
        """Test rows are padded or cut to the headers"""
        table = ExtractedTable(headers=["a", "b"], rows=[["1"], ["1", "2", "3"]])
        assert table.rows == [["1", ""], ["1", "2"]]
