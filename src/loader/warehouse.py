# src/loader/warehouse.py
"""
Thin wrapper over the Redshift Data API.

Statements are asynchronous on the service side: each call submits the SQL,
polls `describe_statement` until it settles, and pages through
`get_statement_result` when the statement produced rows.
"""
import time, logging

log = logging.getLogger()

DONE = "FINISHED"
BROKEN = ("FAILED", "ABORTED")


class WarehouseError(Exception):
    pass


def _field_value(f: dict):
    if f.get("isNull"):
        return None
    for k in ("stringValue", "longValue", "doubleValue", "booleanValue"):
        if k in f:
            return f[k]
    return None


class Warehouse:
    def __init__(self, client, workgroup: str, database: str, poll_interval: float = 0.25):
        self.client = client
        self.workgroup = workgroup
        self.database = database
        self.poll_interval = poll_interval

    def _run(self, sql: str, params: dict | None = None) -> dict:
        req = {"WorkgroupName": self.workgroup, "Database": self.database, "Sql": sql}
        if params:
            req["Parameters"] = [{"name": k, "value": str(v)} for k, v in params.items()]
        statement_id = self.client.execute_statement(**req)["Id"]
        while True:
            desc = self.client.describe_statement(Id=statement_id)
            status = desc["Status"]
            if status == DONE:
                return desc
            if status in BROKEN:
                raise WarehouseError(f"{status}: {desc.get('Error', 'unknown error')}")
            time.sleep(self.poll_interval)

    def query(self, sql: str, params: dict | None = None) -> list[dict]:
        desc = self._run(sql, params)
        if not desc.get("HasResultSet"):
            return []
        rows, token = [], None
        while True:
            page = self.client.get_statement_result(Id=desc["Id"], **({"NextToken": token} if token else {}))
            columns = [c["name"] for c in page["ColumnMetadata"]]
            for record in page["Records"]:
                rows.append(dict(zip(columns, (_field_value(f) for f in record))))
            token = page.get("NextToken")
            if not token:
                return rows

    def insert_rows(self, dataset: str, table: str, rows: list[dict]) -> None:
        # Data API parameters cannot carry NULL or empty strings, so those go in as literal NULL
        for row in rows:
            columns, values, params = [], [], {}
            for column, value in row.items():
                columns.append(column)
                if value is None or value == "":
                    values.append("NULL")
                else:
                    values.append(f":{column}")
                    params[column] = value
            sql = f"INSERT INTO {dataset}.{table} ({', '.join(columns)}) VALUES ({', '.join(values)})"
            self._run(sql, params)


def find_existing(warehouse: Warehouse, dataset: str, table: str, mls: str) -> list[dict]:
    return warehouse.query(f"SELECT * FROM {dataset}.{table} WHERE mls = :mls", {"mls": mls.strip()})
