#!/usr/bin/env python3
"""
Send a sample Cursor agent callback to a running Orchestra instance.
"""

import json
import sys

import httpx

SAMPLE_PAYLOADS = {
    "running": {"status": "RUNNING"},
    "finished": {
        "status": "FINISHED",
        "target": {"prUrl": "https://github.com/example/repo/pull/1"},
    },
    "finished-no-url": {"status": "FINISHED"},
    "error": {"status": "ERROR", "error": "Sample failure from send_webhook.py"},
    "nested": {"data": {"status": "FINISHED", "pr_url": "https://github.com/example/repo/pull/2"}},
}


def send_webhook(task_id: str, kind: str, base_url: str = "http://localhost:8000") -> bool:
    """Post one sample payload and print the response."""
    payload = SAMPLE_PAYLOADS[kind]
    url = f"{base_url.rstrip('/')}/webhooks/cursor/{task_id}"

    print(f"POST {url}")
    print(json.dumps(payload, indent=2))

    try:
        response = httpx.post(url, json=payload, timeout=10.0)
    except httpx.HTTPError as e:
        print(f"Error: request failed: {e}")
        return False

    print(f"\n{response.status_code} {response.reason_phrase}")
    print(response.text)
    return response.is_success


if __name__ == "__main__":
    if len(sys.argv) < 3 or sys.argv[2] not in SAMPLE_PAYLOADS:
        print(f"Usage: python send_webhook.py <task_id> <{'|'.join(SAMPLE_PAYLOADS)}> [base_url]")
        sys.exit(1)

    task_id = sys.argv[1]
    kind = sys.argv[2]
    base_url = sys.argv[3] if len(sys.argv) > 3 else "http://localhost:8000"

    success = send_webhook(task_id, kind, base_url)
    sys.exit(0 if success else 1)
