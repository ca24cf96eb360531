"""
Streaming downloads, sync and async.
"""

import asyncio

from resilient_http import AsyncHTTPClient, ClientConfig, HTTPClient

URL = "https://httpbin.org/bytes/102400"


def sync_download():
    with HTTPClient(ClientConfig.create(backoffs=[0.5, 1])) as client:
        size = client.download_file(URL, "download.bin", show_progress=True)
        print(f"Downloaded {size} bytes")


async def async_download():
    async with AsyncHTTPClient() as client:
        size = await client.download_file(URL, "download_async.bin", chunk_size=16384)
        print(f"Downloaded {size} bytes (async)")


if __name__ == "__main__":
    sync_download()
    asyncio.run(async_download())
