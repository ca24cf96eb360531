"""
Configuration from environment variables, .env and YAML files.
"""

import os
import tempfile

from resilient_http import HTTPClient, load_from_env, load_from_file
from resilient_http.core.env_config import load_settings


def from_env():
    print("\n=== From environment ===")

    os.environ["RESILIENT_HTTP_TIMEOUT"] = "5"
    os.environ["RESILIENT_HTTP_RETRY_BACKOFFS"] = "0.1,0.5"
    os.environ["RESILIENT_HTTP_BEARER_TOKEN"] = "demo-token"

    print(load_settings().summary())

    with HTTPClient(load_from_env()) as client:
        print(client.get("https://httpbin.org/headers")[:300])


def from_yaml():
    print("\n=== From YAML ===")

    content = (
        "resilient_http:\n"
        "  timeout: 3\n"
        "  retry:\n"
        "    backoffs: [0.2, 0.4]\n"
        "  log:\n"
        "    enabled: true\n"
        "    format: colored\n"
    )
    with tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False) as f:
        f.write(content)

    try:
        with HTTPClient(load_from_file(f.name)) as client:
            client.get("https://httpbin.org/get")
    finally:
        os.remove(f.name)


if __name__ == "__main__":
    from_env()
    from_yaml()
