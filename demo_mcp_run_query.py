# demo_mcp_run_query.py
# Version: v1
#
# Demo: call the MCP-style run_query task and print the first rows.
#
# Usage (bash):
#
#   export DUNE_API_KEY=...          # or DUNE_MOCK_MODE=1 for the mock backend
#   export DUNE_TEST_QUERY_ID=1215383
#   python demo_mcp_run_query.py

import asyncio
import os
from typing import Any, Dict, List

from dune_mcp.tools import tasks

TEST_QUERY_ID = int(os.environ.get("DUNE_TEST_QUERY_ID", "1"))
TEST_MAX_ROWS = int(os.environ.get("DUNE_TEST_MAX_ROWS", "10"))


async def main() -> None:
    print("Calling MCP task: run_query()")
    print(f"Query id:  {TEST_QUERY_ID}")
    print(f"Max rows:  {TEST_MAX_ROWS}")
    print()

    result: Dict[str, Any] = await tasks.run_query(
        query_id=TEST_QUERY_ID,
        max_rows=TEST_MAX_ROWS,
    )

    meta = result.get("meta", {})
    print(f"Execution id:   {result.get('execution_id')}")
    print(f"Total rows:     {meta.get('total_row_count')}")
    print(f"Truncated:      {meta.get('truncated')}")
    print()

    rows: List[Dict[str, Any]] = result.get("rows", [])
    for row in rows:
        print(f"- {row}")


if __name__ == "__main__":
    asyncio.run(main())
