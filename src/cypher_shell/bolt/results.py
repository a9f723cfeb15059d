from dataclasses import dataclass
from typing import List

from neo4j import Record, Result, ResultSummary


@dataclass(frozen=True)
class BoltResult:
    """A fully consumed query result: column names, rows and the server summary."""

    keys: List[str]
    records: List[Record]
    summary: ResultSummary

    @classmethod
    def from_result(cls, result: Result) -> "BoltResult":
        # Iterating is what actually pulls the rows from the server.
        keys = list(result.keys())
        records = list(result)
        return cls(keys=keys, records=records, summary=result.consume())
