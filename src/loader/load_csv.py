# src/loader/load_csv.py
import os, json, time, logging, urllib.parse
from dataclasses import dataclass, field
from typing import Iterable

import boto3
from dotenv import load_dotenv

from loader.records import EmptySourceError, InvalidRecordError, ListingRecord, parse_row, read_rows, to_row
from loader.upsert import Decision, decide
from loader.warehouse import Warehouse, find_existing

load_dotenv()

s3 = boto3.client("s3")
redshift = boto3.client("redshift-data")
ddb = boto3.client("dynamodb")

DATASET = os.getenv("DATASET_ID", "")
TABLE = os.getenv("TABLE_ID", "")
WORKGROUP = os.getenv("WAREHOUSE_WORKGROUP", "")
DATABASE = os.getenv("WAREHOUSE_DATABASE", "dev")
IDEMPOTENCY_TABLE = os.getenv("IDEMPOTENCY_TABLE", "")
CLAIM_LEASE_SECONDS = int(os.getenv("CLAIM_LEASE_SECONDS", 900))
PROGRESS_EVERY = 1000

log = logging.getLogger()
log.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())


@dataclass
class RowResult:
    mls: str
    decision: Decision | None
    ok: bool
    reason: str = ""


@dataclass
class LoadSummary:
    loaded: int = 0
    updated: int = 0
    discarded: int = 0
    failed: int = 0
    invalid: int = 0
    failures: list = field(default_factory=list)

    def add(self, result: RowResult) -> "LoadSummary":
        if not result.ok:
            self.failed += 1
            self.failures.append(result)
        elif result.decision is Decision.INSERT:
            self.loaded += 1
        elif result.decision is Decision.UPDATE:
            self.updated += 1
        else:
            self.discarded += 1
        return self

    def counts(self) -> dict:
        return {
            "loaded": self.loaded,
            "updated": self.updated,
            "discarded": self.discarded,
            "failed": self.failed,
            "invalid": self.invalid,
        }


def insert_record(warehouse: Warehouse, record: ListingRecord) -> str:
    """Append one row; returns the failure reason, or "" on success."""
    row = to_row(record)
    values = ", ".join(f"{k}: {v}" for k, v in row.items())
    try:
        warehouse.insert_rows(DATASET, TABLE, [row])
    except Exception as e:
        log.error("Failed to insert row with values: %s. Exception: %s", values, e)
        return f"insert: {e}"
    log.info("Successfully inserted row with values: %s", values)
    return ""


def process_record(warehouse: Warehouse, record: ListingRecord) -> RowResult:
    try:
        existing = find_existing(warehouse, DATASET, TABLE, record.mls)
    except Exception as e:
        log.error("Lookup failed for MLS %s: %s", record.mls, e)
        return RowResult(record.mls, None, False, f"lookup: {e}")

    decision = decide(record, existing)
    if decision is Decision.SKIP:
        log.info("Record with MLS: %s already exists and has not changed. Skipping.", record.mls)
        return RowResult(record.mls, decision, True)

    reason = insert_record(warehouse, record)
    return RowResult(record.mls, decision, not reason, reason)


def load_rows(warehouse: Warehouse, rows: Iterable[dict]) -> LoadSummary:
    rows = list(rows)
    total = len(rows)
    log.info("Total records to be processed: %d", total)

    summary = LoadSummary()
    for processed, row in enumerate(rows, start=1):
        try:
            record = parse_row(row)
        except InvalidRecordError as e:
            log.warning("Skipping row %d: %s", processed, e)
            summary.invalid += 1
        else:
            summary.add(process_record(warehouse, record))
        if processed % PROGRESS_EVERY == 0:
            log.info("Processed %d records out of %d. Remaining: %d", processed, total, total - processed)
    return summary


def delete_source(bucket: str, key: str) -> bool:
    try:
        s3.delete_object(Bucket=bucket, Key=key)
    except Exception as e:
        log.error("Failed to delete file: %s from bucket: %s. Exception: %s", key, bucket, e)
        return False
    log.info("Successfully deleted file: %s from bucket: %s", key, bucket)
    return True


def load_object(bucket: str, key: str, warehouse: Warehouse) -> LoadSummary:
    obj = s3.get_object(Bucket=bucket, Key=key)
    text = obj["Body"].read().decode("utf-8-sig")
    log.info("Processing file: %s from bucket: %s", key, bucket)

    rows = read_rows(text)
    if rows.fieldnames is None:
        raise EmptySourceError(f"The CSV file is empty: {key}")

    summary = load_rows(warehouse, rows)
    log.info(
        "CSV data from %s inserted into table %s. Loaded: %d, Updated: %d, Discarded: %d",
        key, TABLE, summary.loaded, summary.updated, summary.discarded,
    )
    delete_source(bucket, key)
    return summary


def claim_key(bucket: str, key: str, sequencer: str) -> dict:
    return {"pk": {"S": f"idem#{bucket}/{key}#{sequencer}"}}


def claim_event(bucket: str, key: str, sequencer: str) -> bool:
    """
    Take the IN_PROGRESS lease for this object version. Fails when the event is
    DONE or another invocation still holds an unexpired lease; a lease left
    behind by a timed-out or crashed invocation can be taken over.
    """
    if not IDEMPOTENCY_TABLE:
        return True
    now = int(time.time())
    try:
        ddb.put_item(
            TableName=IDEMPOTENCY_TABLE,
            Item={
                **claim_key(bucket, key, sequencer),
                "claim_status": {"S": "IN_PROGRESS"},
                "lease_until": {"N": str(now + CLAIM_LEASE_SECONDS)},
                "ttl": {"N": str(now + 86400)},
            },
            ConditionExpression="attribute_not_exists(pk) OR (claim_status = :busy AND lease_until < :now)",
            ExpressionAttributeValues={":busy": {"S": "IN_PROGRESS"}, ":now": {"N": str(now)}},
        )
    except ddb.exceptions.ConditionalCheckFailedException:
        return False
    return True


def finish_event(bucket: str, key: str, sequencer: str) -> None:
    if IDEMPOTENCY_TABLE:
        ddb.update_item(
            TableName=IDEMPOTENCY_TABLE,
            Key=claim_key(bucket, key, sequencer),
            UpdateExpression="SET claim_status = :done",
            ExpressionAttributeValues={":done": {"S": "DONE"}},
        )


def release_event(bucket: str, key: str, sequencer: str) -> None:
    if IDEMPOTENCY_TABLE:
        ddb.delete_item(TableName=IDEMPOTENCY_TABLE, Key=claim_key(bucket, key, sequencer))


def handler(event, context):
    log.info("Load triggered by S3 event: %s", json.dumps(event))
    rec = (event.get("Records") or [])[0]["s3"]
    bucket = rec["bucket"]["name"]
    key = urllib.parse.unquote_plus(rec["object"]["key"], encoding="utf-8")
    sequencer = rec["object"].get("sequencer") or rec["object"].get("eTag", "")

    if not claim_event(bucket, key, sequencer):
        log.info("Event for %s/%s already processed. Skipping.", bucket, key)
        return {"ok": True, "status": "duplicate"}

    warehouse = Warehouse(redshift, WORKGROUP, DATABASE)
    try:
        summary = load_object(bucket, key, warehouse)
    except Exception as e:
        log.exception("Failed to read CSV file: %s from bucket: %s", key, bucket)
        release_event(bucket, key, sequencer)
        return {"ok": False, "error": str(e)}
    finish_event(bucket, key, sequencer)
    return {"ok": summary.failed == 0, **summary.counts()}
