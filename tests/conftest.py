# tests/conftest.py
import os

# module-level boto3 clients need a region to be constructed
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

import pytest


class FakeBody:
    def __init__(self, data: bytes):
        self.data = data

    def read(self):
        return self.data


class FakeS3:
    def __init__(self, objects=None, fail_keys=(), fail_delete=False):
        self.objects = dict(objects or {})
        self.fail_keys = set(fail_keys)
        self.fail_delete = fail_delete
        self.puts = []
        self.deleted = []

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise RuntimeError(f"NoSuchKey: {Key}")
        return {"Body": FakeBody(self.objects[(Bucket, Key)])}

    def put_object(self, Bucket, Key, Body, ContentType):
        if Key in self.fail_keys:
            raise RuntimeError("upload refused")
        self.puts.append({"Bucket": Bucket, "Key": Key, "Body": Body, "ContentType": ContentType})

    def delete_object(self, Bucket, Key):
        if self.fail_delete:
            raise RuntimeError("AccessDenied")
        self.deleted.append((Bucket, Key))


class FakeWarehouse:
    def __init__(self, rows=None, fail_insert=(), fail_lookup=()):
        self.rows = list(rows or [])
        self.fail_insert = set(fail_insert)
        self.fail_lookup = set(fail_lookup)
        self.inserted = []

    def query(self, sql, params=None):
        mls = params["mls"]
        if mls in self.fail_lookup:
            raise RuntimeError("query timed out")
        return [r for r in self.rows if r["mls"] == mls]

    def insert_rows(self, dataset, table, rows):
        for row in rows:
            if row["mls"] in self.fail_insert:
                raise RuntimeError("insert rejected")
            self.rows.append(row)
            self.inserted.append((dataset, table, row))


def s3_event(bucket, key, sequencer="0055AED6DCD90281E5"):
    return {"Records": [{"s3": {"bucket": {"name": bucket}, "object": {"key": key, "sequencer": sequencer}}}]}


@pytest.fixture
def fake_s3():
    return FakeS3()


@pytest.fixture
def warehouse():
    return FakeWarehouse()
