"""
Write the fulfillment API's OpenAPI document.

Usage:
    python scripts/generate_openapi.py                  # Print to stdout
    python scripts/generate_openapi.py -o openapi.json  # Save to file
    python scripts/generate_openapi.py --summary        # Endpoint count per tag
"""

import argparse
import json
import sys
from collections import Counter
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from api.server import create_app


def endpoint_tags(openapi: dict) -> Counter:
    counts = Counter()
    for methods in openapi.get("paths", {}).values():
        for operation in methods.values():
            for tag in operation.get("tags", ["untagged"]):
                counts[tag] += 1
    return counts


def main():
    parser = argparse.ArgumentParser(description="Generate the OpenAPI document")
    parser.add_argument("--output", "-o", help="Output file path (default: stdout)")
    parser.add_argument("--summary", action="store_true", help="Print endpoint counts per tag")
    args = parser.parse_args()

    openapi = create_app().openapi()
    text = json.dumps(openapi, indent=2, ensure_ascii=False)

    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        print(f"OpenAPI document written to: {args.output}")
    else:
        print(text)

    if args.summary:
        print(f"\n{openapi['info']['title']} {openapi['info']['version']}", file=sys.stderr)
        for tag, count in sorted(endpoint_tags(openapi).items()):
            print(f"  {tag}: {count}", file=sys.stderr)


if __name__ == "__main__":
    main()
