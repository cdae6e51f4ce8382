# src/splitter/split_csv.py
import os, io, json, logging, urllib.parse
from dataclasses import dataclass, field

import boto3
from dotenv import load_dotenv

load_dotenv()

s3 = boto3.client("s3")

SPLIT_BUCKET = os.getenv("SPLIT_FILES_BUCKET_NAME", "")
BATCH_SIZE = 100

log = logging.getLogger()
log.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())


class EmptySourceError(Exception):
    """The source object has no header line."""


@dataclass
class Batch:
    number: int
    header: str
    rows: list

    @property
    def name(self):
        return batch_file_name(self.number)

    def body(self):
        return "".join(f"{line}\n" for line in [self.header, *self.rows]).encode("utf-8")


@dataclass
class BatchResult:
    name: str
    ok: bool
    reason: str = ""


@dataclass
class SplitSummary:
    results: list = field(default_factory=list)

    @property
    def written(self):
        return [r.name for r in self.results if r.ok]

    @property
    def failed(self):
        return [r for r in self.results if not r.ok]


def batch_file_name(number):
    return f"zip-code-split-file-{number:03d}.csv"


def iter_batches(lines, size=BATCH_SIZE):
    """
    Yield the data lines after the header in groups of at most `size`,
    numbered from 1, each carrying the header.
    Raises EmptySourceError when there is no header line at all.
    """
    it = iter(lines)
    header = next(it, None)
    if header is None:
        raise EmptySourceError("The CSV file is empty")
    number, current = 1, []
    for line in it:
        current.append(line)
        if len(current) == size:
            yield Batch(number, header, current)
            number, current = number + 1, []
    if current:
        yield Batch(number, header, current)


def upload_batch(batch, dest_bucket):
    try:
        s3.put_object(Bucket=dest_bucket, Key=batch.name, Body=batch.body(), ContentType="text/csv")
    except Exception as e:
        log.error("Error writing batch to file: %s: %s", batch.name, e)
        return BatchResult(batch.name, False, str(e))
    log.info("Uploaded %s to bucket %s.", batch.name, dest_bucket)
    return BatchResult(batch.name, True)


def read_lines(text):
    # only \n, \r and \r\n end a line; other Unicode separators stay inside the row
    return (line[:-1] if line.endswith("\n") else line for line in io.StringIO(text, newline=None))


def split_object(bucket, key, dest_bucket):
    obj = s3.get_object(Bucket=bucket, Key=key)
    text = obj["Body"].read().decode("utf-8-sig")
    log.info("Successfully downloaded file: %s from bucket: %s", key, bucket)

    summary = SplitSummary()
    for batch in iter_batches(read_lines(text)):
        summary.results.append(upload_batch(batch, dest_bucket))
    return summary


def handler(event, context):
    log.info("Split triggered by S3 event: %s", json.dumps(event))
    rec = (event.get("Records") or [])[0]["s3"]
    bucket = rec["bucket"]["name"]
    key = urllib.parse.unquote_plus(rec["object"]["key"], encoding="utf-8")

    try:
        summary = split_object(bucket, key, SPLIT_BUCKET)
    except Exception as e:
        log.exception("Error splitting file: %s from bucket: %s", key, bucket)
        return {"ok": False, "error": str(e)}

    log.info("Split of %s completed. Written: %d, Failed: %d", key, len(summary.written), len(summary.failed))
    return {
        "ok": not summary.failed,
        "written": len(summary.written),
        "failed": len(summary.failed),
        "files": summary.written,
    }
