# Dune Query MCP Server
# File: codec.py
# Version: v1

"""Concatenation of sequentially fetched result pages.

Pure functions: inputs are never mutated, a new object is returned.
"""

from __future__ import annotations

from dataclasses import replace

from .errors import ResultMergeError
from .models import CSVResponse, ExecutionResult, ResultMetadata, ResultsResponse


def concat_result_metadata(left: ResultMetadata, right: ResultMetadata) -> ResultMetadata:
    """Sum the page-local counters; everything else is global and taken from ``right``."""
    return replace(
        right,
        row_count=left.row_count + right.row_count,
        result_set_bytes=left.result_set_bytes + right.result_set_bytes,
        datapoint_count=left.datapoint_count + right.datapoint_count,
    )


def concat_result(left: ExecutionResult, right: ExecutionResult) -> ExecutionResult:
    return ExecutionResult(
        rows=[*left.rows, *right.rows],
        metadata=concat_result_metadata(left.metadata, right.metadata),
    )


def concat_result_response(left: ResultsResponse, right: ResultsResponse) -> ResultsResponse:
    """Append ``right`` (the page just fetched) to ``left`` (everything so far).

    The continuation pointer and all top-level fields come from ``right``.
    """
    if left.execution_id != right.execution_id:
        raise ResultMergeError(
            f"Can't combine results: ExecutionIds ({left.execution_id} != {right.execution_id})"
        )
    if left.result is None:
        raise ResultMergeError("Can't combine results: Left Entry has no results")
    if right.result is None:
        raise ResultMergeError("Can't combine results: Right Entry has no results")

    return replace(right, result=concat_result(left.result, right.result))


def concat_result_csv(left: CSVResponse, right: CSVResponse) -> CSVResponse:
    """Append the rows of ``right`` to ``left``, keeping only the first header line."""
    left_lines = left.data.rstrip().split("\n")
    right_lines = right.data.split("\n")
    # drop the header
    right_lines = right_lines[1:]

    return CSVResponse(
        data="\n".join(left_lines + right_lines),
        next_uri=right.next_uri,
        next_offset=right.next_offset,
    )
