import pytest

from inventory_desk.errors import ValidationError
from inventory_desk.parsing import detect_delimiter, iter_rows, parse_file, parse_text


def test_csv_rows_are_keyed_by_lower_cased_header() -> None:
    text = "Name,SKU,Category,Price,Quantity\nBolt,BLT001,Hardware,0.25,400\nNut,NUT001,Hardware,0.10,900\n"

    rows = parse_text("stock.csv", text)

    assert len(rows) == 2
    assert all(set(row) == {"name", "sku", "category", "price", "quantity"} for row in rows)
    assert rows[0]["sku"] == "BLT001"
    assert rows[1]["quantity"] == "900"


def test_tab_separated_txt() -> None:
    text = "name\tsku\tprice\nDesk Lamp\tLMP001\t35.50\n"

    assert detect_delimiter("stock.txt", text) == "\t"
    assert parse_text("stock.txt", text) == [{"name": "Desk Lamp", "sku": "LMP001", "price": "35.50"}]


def test_txt_without_tabs_falls_back_to_commas() -> None:
    text = "name,sku,price\nDesk Lamp,LMP001,35.50\n"

    assert detect_delimiter("stock.TXT", text) == ","
    assert parse_text("stock.txt", text)[0]["sku"] == "LMP001"


def test_unsupported_extension_is_rejected() -> None:
    with pytest.raises(ValidationError, match="Unsupported file type"):
        detect_delimiter("stock.xlsx", "name,sku\n")


def test_quoted_field_keeps_delimiter() -> None:
    rows = parse_text("stock.csv", 'name,sku,description\n"Chair, ergonomic",CHR001,"Grey, mesh back"\n')

    assert rows == [{"name": "Chair, ergonomic", "sku": "CHR001", "description": "Grey, mesh back"}]


def test_doubled_quotes_and_line_breaks_inside_quotes() -> None:
    text = 'name,sku,description\nMonitor,MON001,"27"" panel\nwith stand"\n'

    rows = parse_text("stock.csv", text)

    assert rows[0]["description"] == '27" panel\nwith stand'


def test_blank_short_and_long_rows() -> None:
    text = "name,sku,price\n\n   \nBolt,BLT001,0.25\nShort,ONLY\n,,\nLong,LNG001,1.00,extra,fields\n"

    rows = list(iter_rows(text, ","))

    assert rows == [
        {"name": "Bolt", "sku": "BLT001", "price": "0.25"},
        {"name": "", "sku": "", "price": ""},
        {"name": "Long", "sku": "LNG001", "price": "1.00"},
    ]


def test_whitespace_only_tab_lines_are_skipped() -> None:
    text = "name\tsku\tprice\n\t\t\nBolt\tBLT001\t0.25\n  \t \t \n"

    assert list(iter_rows(text, "\t")) == [{"name": "Bolt", "sku": "BLT001", "price": "0.25"}]


def test_fields_are_trimmed() -> None:
    rows = parse_text("stock.csv", " name , sku \n  Hammer  ,  HAM001 \n")

    assert rows == [{"name": "Hammer", "sku": "HAM001"}]


def test_header_only_file_has_no_rows() -> None:
    assert parse_text("stock.csv", "name,sku,price\n") == []


def test_parse_file_tolerates_byte_order_mark() -> None:
    data = "\ufeffname,sku\nTape,TAP001\n".encode("utf-8")

    assert parse_file("stock.csv", data) == [{"name": "Tape", "sku": "TAP001"}]


def test_parse_file_rejects_non_utf8() -> None:
    with pytest.raises(ValidationError, match="UTF-8"):
        parse_file("stock.csv", b"name,sku\n\xff\xfe\xfa,BAD\n")


def test_rows_are_generated_lazily() -> None:
    rows = iter_rows("name\nfirst\nsecond\n")

    assert next(rows) == {"name": "first"}
    assert next(rows) == {"name": "second"}
    with pytest.raises(StopIteration):
        next(rows)
