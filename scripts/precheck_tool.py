#!/usr/bin/env python3
"""
Precheck Tool - agent hook script

Routes one proposed tool call through the Precheck Gateway and reports the
outcome through its exit code.

Exit codes:
    0 = ALLOW   (tool ran successfully)
    1 = BLOCK   (action denied, or the decision path was unavailable)
    2 = CONFIRM (out-of-band approval required; nothing was executed)
    3 = Error communicating with the gateway, invalid input, or tool failure
"""

from __future__ import annotations

import json
import os
import sys

# Ensure the project root is importable so precheck_sdk resolves
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from precheck_sdk import PrecheckGatewayClient


def main(argv: list[str] | None = None, stdin_text: str | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    gateway_url = os.environ.get("PRECHECK_GATEWAY_URL", "http://localhost:8000")
    user_id = os.environ.get("PRECHECK_USER_ID", "")
    org_id = os.environ.get("PRECHECK_ORG_ID") or None

    if not user_id:
        print("[precheck] ERROR: PRECHECK_USER_ID is not set.", file=sys.stderr)
        return 3

    # ---- Parse input ----
    # Expected shape on stdin: {"tool": "weather_current", "args": {...}, "messages": [...]}
    raw_input = (sys.stdin.read() if stdin_text is None else stdin_text).strip()
    messages: list = []
    if not raw_input:
        if len(argv) >= 1:
            tool = argv[0]
            try:
                args = json.loads(argv[1]) if len(argv) >= 2 else {}
            except json.JSONDecodeError as exc:
                print(f"[precheck] ERROR: Invalid args JSON: {exc}", file=sys.stderr)
                return 3
        else:
            print("[precheck] ERROR: No tool call provided via stdin or args.", file=sys.stderr)
            return 3
    else:
        try:
            payload = json.loads(raw_input)
            tool = payload["tool"]
            args = payload.get("args", {})
            messages = payload.get("messages", [])
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as exc:
            print(f"[precheck] ERROR: Invalid input: {exc}", file=sys.stderr)
            return 3

    # ---- Submit ----
    client = PrecheckGatewayClient(gateway_url=gateway_url, user_id=user_id, org_id=org_id)
    try:
        result = client.call_tool(tool, args, messages)
    except Exception as exc:
        print(f"[precheck] ERROR: Gateway unreachable: {exc}", file=sys.stderr)
        return 3
    finally:
        client.close()

    # ---- Handle decision ----
    if result.decision == "ALLOW":
        if not result.success:
            print(f"[precheck] ALLOWED but tool failed: {result.error}", file=sys.stderr)
            return 3
        print(json.dumps(result.data, indent=2, default=str))
        return 0

    if result.decision == "BLOCK":
        print(f"[precheck] BLOCKED (corr={result.correlation_id})")
        for reason in result.reasons:
            print(f"  - {reason}")
        return 1

    if result.decision == "CONFIRM":
        print(f"[precheck] CONFIRMATION REQUIRED (corr={result.correlation_id})")
        print(f"  Approve at: {result.confirmation_url}")
        return 2

    print(f"[precheck] ERROR: {result.error or 'no decision returned'}", file=sys.stderr)
    return 3


if __name__ == "__main__":
    sys.exit(main())
