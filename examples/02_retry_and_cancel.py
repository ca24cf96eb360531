"""
Retries, log context and cancellation.
"""

import threading

from resilient_http import (
    CancelledError,
    ClientConfig,
    HTTPClient,
    LoggingConfig,
    StreamResetRetryClassifier,
    background,
    exponential_backoff,
)


def with_retry():
    print("\n=== Retry on temporary errors ===")

    config = ClientConfig.create(
        timeout=5,
        backoffs=exponential_backoff(4, 0.2),
        classifier=StreamResetRetryClassifier(),
        logging=LoggingConfig.create(level="DEBUG", format="colored"),
    )
    with HTTPClient(config) as client:
        client.get("https://httpbin.org/get")


def with_log_context():
    print("\n=== Fields on every log event ===")

    def log_context(ctx, call):
        return ctx.with_fields(endpoint=call.url.split("?")[0])

    config = ClientConfig.create(
        log_context_func=log_context,
        logging=LoggingConfig.create(level="DEBUG", format="json"),
    )
    with HTTPClient(config) as client:
        client.get("https://httpbin.org/get", ctx=background().with_fields(request_id="req-42"))


def cancel_from_other_thread():
    print("\n=== Cancellation ===")

    ctx, cancel = background().with_cancel()
    threading.Timer(0.5, cancel).start()

    with HTTPClient(ClientConfig.create(backoffs=[5, 5])) as client:
        try:
            client.get("https://httpbin.org/delay/10", ctx=ctx)
        except CancelledError as e:
            print(f"Cancelled: {e}")


if __name__ == "__main__":
    with_retry()
    with_log_context()
    cancel_from_other_thread()
