"""python -m feedkeeper：同步一轮后退出."""

import asyncio

from feedkeeper.main import run_once

if __name__ == "__main__":
    asyncio.run(run_once())
