# demo_mcp_results_page.py
# Version: v1
#
# Demo: walk a completed execution page by page with get_results_page.
#
# Usage (bash):
#
#   export DUNE_API_KEY=...          # or DUNE_MOCK_MODE=1 for the mock backend
#   export DUNE_TEST_EXECUTION_ID=01MOCK-Q1-0
#   export DUNE_TEST_PAGE_SIZE=4
#   python demo_mcp_results_page.py

import asyncio
import os
from typing import Any, Dict

from dune_mcp.tools import tasks

TEST_EXECUTION_ID = os.environ.get("DUNE_TEST_EXECUTION_ID", "01MOCK-Q1-0")
TEST_PAGE_SIZE = int(os.environ.get("DUNE_TEST_PAGE_SIZE", "4"))


async def main() -> None:
    print("Calling MCP task: get_results_page()")
    print(f"Execution id: {TEST_EXECUTION_ID}")
    print(f"Page size:    {TEST_PAGE_SIZE}")
    print()

    page = 1
    while True:
        result: Dict[str, Any] = await tasks.get_results_page(
            execution_id=TEST_EXECUTION_ID,
            page=page,
            page_size=TEST_PAGE_SIZE,
        )
        print(
            f"Page {result['page']}/{result['max_page']} "
            f"(session reused: {result['meta']['session_reused']})"
        )
        for row in result.get("rows", []):
            print(f"  {row}")

        if page >= result["max_page"]:
            break
        page += 1


if __name__ == "__main__":
    asyncio.run(main())
