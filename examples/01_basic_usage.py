"""
Basic HTTPClient usage: verbs, options, bytes and typed JSON results.
"""

from pydantic import BaseModel

from resilient_http import HTTPClient, HTTPError, set_header, set_query, set_type_form


class Post(BaseModel):
    id: int
    title: str


def text_requests():
    print("\n=== Text requests ===")

    with HTTPClient(timeout=10) as client:
        text = client.get("https://httpbin.org/get", "", set_query({"hello": "world"}))
        print(text[:200])

        text = client.post("https://httpbin.org/post", "hello=world", set_type_form())
        print(text[:200])


def typed_json():
    print("\n=== JSON client ===")

    with HTTPClient() as client:
        post = client.json().get("https://jsonplaceholder.typicode.com/posts/1", None, Post)
        print(f"Post #{post.id}: {post.title}")


def status_errors():
    print("\n=== Non-2xx status ===")

    with HTTPClient() as client:
        try:
            client.get("https://httpbin.org/status/404", "", set_header("X-Demo", "1"))
        except HTTPError as e:
            print(f"HTTPError: {e.status_text}")


if __name__ == "__main__":
    text_requests()
    typed_json()
    status_errors()
