"""Neurolog — CLI entry point."""

import logging
import sys

from neurolog import analyze, generate_report

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    path = sys.argv[1] if len(sys.argv) > 1 else "export.json"
    result = analyze(path)
    print(generate_report(result))
