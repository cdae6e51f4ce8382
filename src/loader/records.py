# src/loader/records.py
"""
Listing records parsed from the MLS export CSV and the warehouse row
payload built from them.
"""
import csv, io, time
from dataclasses import dataclass, fields

# CSV header -> record attribute
CSV_COLUMNS = {
    "MLS #": "mls",
    "Class": "class_",
    "Property Type": "property_type",
    "Status": "status",
    "Price": "price",
    "County": "county",
    "Address": "address",
    "City": "city",
    "Zip": "zip",
    "#Br": "beds",
    "#FBath": "baths",
    "#HalfBa": "half_baths",
    "Gar": "garage",
    "Sq Feet": "sq_feet",
    "List Agent - Agt Name": "list_agent",
    "List Off 1 - Ofc Name": "list_office",
}

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class InvalidRecordError(ValueError):
    pass


class EmptySourceError(ValueError):
    """The CSV has no header line."""


@dataclass
class ListingRecord:
    mls: str
    class_: str = ""
    property_type: str = ""
    status: str = ""
    price: str = ""
    county: str = ""
    address: str = ""
    city: str = ""
    zip: str = ""
    beds: str = ""
    baths: str = ""
    half_baths: str = ""
    garage: str = ""
    sq_feet: str = ""
    list_agent: str = ""
    list_office: str = ""

    @property
    def price_digits(self):
        return digits(self.price)

    @property
    def price_per_sqft(self):
        price = int(self.price_digits or 0)
        try:
            sqft = int(self.sq_feet.strip())
        except ValueError:
            sqft = 0
        return price // sqft if sqft > 0 else 0


def digits(value):
    return "".join(ch for ch in (value or "") if ch.isdigit())


def parse_row(row):
    values = {attr: (row.get(col) or "").strip() for col, attr in CSV_COLUMNS.items()}
    if not values["mls"]:
        raise InvalidRecordError("missing MLS #")
    return ListingRecord(**values)


def read_rows(text):
    return csv.DictReader(io.StringIO(text))


def to_row(record, now=None):
    """Warehouse payload for one listing state; `now` defaults to the current UTC time."""
    row = {}
    for f in fields(record):
        column = f.name.rstrip("_")
        row[column] = getattr(record, f.name).strip()
    row["price"] = record.price_digits
    row["price_sq_feet"] = record.price_per_sqft
    row["last_updt_ts"] = time.strftime(TIMESTAMP_FORMAT, now or time.gmtime())
    return row
