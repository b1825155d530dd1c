"""
Golden-set runner for a live agent server.

Replays evals/golden_sets.yaml against POST /chat and checks tool
selection, required / forbidden phrases and latency. Needs a running
server (python main.py) and a real ANTHROPIC_API_KEY; it is not part of
the pytest suite.

  python evals/run_golden_sets.py --base-url http://localhost:8000
"""

import argparse
import asyncio
import json
import os
import time
import uuid
from datetime import datetime

import httpx
import yaml

HERE = os.path.dirname(os.path.abspath(__file__))
LATENCY_LIMIT_SECONDS = 30.0


def _percentile(values: list, p: int) -> float:
    if not values:
        return 0.0
    sorted_vals = sorted(values)
    idx = (p / 100) * (len(sorted_vals) - 1)
    lo, hi = int(idx), min(int(idx) + 1, len(sorted_vals) - 1)
    return round(sorted_vals[lo] + (idx - lo) * (sorted_vals[hi] - sorted_vals[lo]), 2)


async def run_check(client, base_url, case, owner_id, retries=2):
    last_exc = None
    for attempt in range(1, retries + 1):
        start = time.time()
        try:
            resp = await client.post(
                f"{base_url}/chat",
                json={"query": case.get("query", ""), "owner_id": owner_id, "history": []},
                timeout=LATENCY_LIMIT_SECONDS,
            )
            data = resp.json()
            elapsed = time.time() - start
            break
        except (httpx.HTTPError, ValueError) as e:
            last_exc = e
            if attempt < retries:
                await asyncio.sleep(2)
    else:
        return {
            "id": case["id"],
            "passed": False,
            "failures": [f"EXCEPTION (after {retries} attempts): {last_exc}"],
            "latency": 0,
            "tools_used": [],
        }

    response_text = data.get("response", "").lower()
    tools_used = data.get("tools_used", [])
    failures = []

    # Tool selection
    expected = case.get("expected_tools")
    if expected is not None:
        if expected == [] and tools_used:
            failures.append(f"TOOL SELECTION: expected no tools — got {tools_used}")
        for tool in expected:
            if tool not in tools_used:
                failures.append(f"TOOL SELECTION: expected '{tool}' — got {tools_used}")

    for phrase in case.get("must_contain", []):
        if phrase.lower() not in response_text:
            failures.append(f"CONTENT: missing required phrase '{phrase}'")

    one_of = case.get("must_contain_one_of", [])
    if one_of and not any(p.lower() in response_text for p in one_of):
        failures.append(f"CONTENT: must contain one of {one_of}")

    for phrase in case.get("must_not_contain", []):
        if phrase.lower() in response_text:
            failures.append(f"NEGATIVE: contains forbidden phrase '{phrase}'")

    if elapsed > LATENCY_LIMIT_SECONDS:
        failures.append(f"LATENCY: {elapsed:.1f}s exceeded {LATENCY_LIMIT_SECONDS}s")

    return {
        "id": case["id"],
        "category": case.get("category", ""),
        "passed": not failures,
        "latency": round(elapsed, 2),
        "tools_used": tools_used,
        "failures": failures,
        "query": case.get("query", "")[:60],
    }


async def main():
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--cases", default=os.path.join(HERE, "golden_sets.yaml"))
    parser.add_argument("--out", default=os.path.join(HERE, "golden_results.json"))
    args = parser.parse_args()

    with open(args.cases, encoding="utf-8") as f:
        golden = yaml.safe_load(f)

    # A throwaway owner keeps golden runs out of real ledgers
    owner_id = f"golden_{uuid.uuid4().hex[:8]}"

    print("=" * 60)
    print("FINANCE AGENT — GOLDEN SETS")
    print("=" * 60)

    results = []
    async with httpx.AsyncClient() as client:
        for case in golden:
            r = await run_check(client, args.base_url, case, owner_id)
            results.append(r)
            status = "✅ PASS" if r["passed"] else "❌ FAIL"
            print(f"{status} | {r['id']} | {r.get('latency', 0):.1f}s | tools: {r.get('tools_used', [])}")
            for failure in r["failures"]:
                print(f"       → {failure}")

    passed = sum(r["passed"] for r in results)
    latencies = [r["latency"] for r in results if r.get("latency", 0) > 0]
    print(f"\nGOLDEN SETS: {passed}/{len(results)} passed")
    if latencies:
        print(
            f"LATENCY: avg={round(sum(latencies) / len(latencies), 2)}s  "
            f"p50={_percentile(latencies, 50)}s  p95={_percentile(latencies, 95)}s"
        )

    with open(args.out, "w", encoding="utf-8") as f:
        json.dump(
            {
                "timestamp": datetime.utcnow().isoformat(),
                "owner_id": owner_id,
                "golden_sets": results,
                "summary": {
                    "pass_rate": f"{passed}/{len(results)}",
                    "p50": _percentile(latencies, 50),
                    "p95": _percentile(latencies, 95),
                },
            },
            f,
            indent=2,
            ensure_ascii=False,
        )
    print(f"Results → {args.out}")


if __name__ == "__main__":
    asyncio.run(main())
