"""Tests for HTML table extraction and the fetch -> extract -> infer harvester."""

from core.schema import InferredType
from harvesters.table_extractor import TableExtractor, clean_text, is_repeated_header
from harvesters.table_harvester import TableHarvester


POPULATION_PAGE = """
<html><body>
<table class="wikitable">
  <tr><th>Country</th><th>Population[1]</th><th>Updated</th></tr>
  <tr><td>Kenya</td><td>55,100,586</td><td>2023-07-01</td></tr>
  <tr><td>  Chile  </td><td>19,629,590 [note 2]</td><td>2023-07-01</td></tr>
  <tr><th>country</th><th>POPULATION</th><th>updated</th></tr>
  <tr><td></td><td> </td><td></td></tr>
  <tr><td>India</td><td>1,428,627,663</td><td>-</td></tr>
</table>
</body></html>
"""


class TestCleanText:

    def test_strips_citations_and_whitespace(self):
        """Test citation markers and whitespace are removed"""
        assert clean_text("  19,629,590 [note 2]\n ") == "19,629,590"
        assert clean_text("New\n   York[3][4]") == "New York"

    def test_repeated_header_is_case_insensitive(self):
        """Test repeated header detection"""
        assert is_repeated_header(["NAME", "age"], ["Name", "Age"])
        assert not is_repeated_header(["Name", "31"], ["Name", "Age"])


class TestTableExtractor:

    def test_extracts_headers_and_clean_rows(self):
        """Test headers and cleaned data rows"""
        result = TableExtractor().extract(POPULATION_PAGE)

        assert len(result) == 1
        table = result.tables[0]
        assert table.headers == ["Country", "Population", "Updated"]
        assert table.rows == [
            ["Kenya", "55,100,586", "2023-07-01"],
            ["Chile", "19,629,590", "2023-07-01"],
            ["India", "1,428,627,663", "-"],
        ]

    def test_empty_rows_are_dropped(self):
        """Test empty rows are dropped"""
        html = "<table><tr><th>Name</th><th>Age</th></tr><tr><td>John</td><td>30</td></tr>" \
               "<tr><td></td><td></td></tr></table>"
        table = TableExtractor().extract(html).tables[0]
        assert table.rows == [["John", "30"]]

    def test_blank_header_cells_get_positional_names(self):
        """Test blank header cells"""
        html = "<table><tr><th>Name</th><th></th></tr><tr><td>a</td><td>b</td></tr></table>"
        table = TableExtractor().extract(html).tables[0]
        assert table.headers == ["Name", "column_2"]

    def test_missing_header_row_synthesizes_names(self):
        """Test table without a header row"""
        html = "<table><tr><td></td><td></td></tr><tr><td>a</td><td>b</td></tr></table>"
        table = TableExtractor().extract(html).tables[0]
        assert table.headers == ["column_1", "column_2"]
        assert table.rows == [["a", "b"]]

    def test_nested_table_rows_are_not_merged(self):
        html = """
        <table>
          <tr><th>Outer</th><th>Detail</th></tr>
          <tr><td>x</td><td><table><tr><td>inner</td></tr></table></td></tr>
        </table>
        """
        result = TableExtractor().extract(html)

        outer = result.tables[0]
        assert outer.headers == ["Outer", "Detail"]
        assert outer.rows == [["x", "inner"]]

    def test_tables_without_data_are_skipped(self):
        """Test tables with no data rows"""
        html = "<table><tr><th>Only</th><th>Headers</th></tr></table>" \
               "<table><tr><th>A</th></tr><tr><td>1</td></tr></table>"
        result = TableExtractor().extract(html)

        assert len(result) == 1
        assert result.tables[0].index == 1
        assert result.errors == []

    def test_document_without_tables(self):
        """Test document without tables"""
        result = TableExtractor().extract(b"<html><body><p>nothing here</p></body></html>")
        assert result.tables == []


class StaticFetcher:
    def __init__(self, document):
        self.document = document
        self.requested = []
        self.stopped = False

    def fetch(self, url):
        self.requested.append(url)
        return self.document

    def stop(self):
        self.stopped = True


class TestTableHarvester:

    def test_harvest_infers_typed_rows(self):
        """Test fetch, extract and infer end to end"""
        fetcher = StaticFetcher(POPULATION_PAGE.encode("utf-8"))
        harvester = TableHarvester(fetcher=fetcher)

        result = harvester.harvest("https://example.org/population")
        harvester.stop()

        assert fetcher.requested == ["https://example.org/population"]
        assert fetcher.stopped
        table = result.select(0)
        assert [c.type for c in table.schema.columns] == [
            InferredType.VARCHAR, InferredType.INT, InferredType.DATE,
        ]
        assert table.rows[2] == {"country": "India", "population": 1428627663, "updated": None}
        assert result.select(1) is None

    def test_unparsed_cells_keep_the_table(self):
        """A cell that does not fit its column becomes NULL and the table is kept"""
        html = "<table><tr><th>Flag</th></tr><tr><td>yes</td></tr><tr><td>12</td></tr></table>" \
               "<table><tr><th>Name</th></tr><tr><td>ok</td></tr></table>"
        result = TableHarvester(fetcher=StaticFetcher(html)).harvest_document(html, source="inline")

        assert [t.index for t in result.tables] == [0, 1]
        assert result.errors == []
        flags = result.select(0)
        assert flags.rows == [{"flag": None}, {"flag": 12}]
        assert flags.unparsed_cells == 1
        assert result.select(1).unparsed_cells == 0
