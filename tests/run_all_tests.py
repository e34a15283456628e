#!/usr/bin/env python3
"""
Run the test modules one by one, bottom layer first, and print a summary
"""

import sys
import subprocess
from pathlib import Path

# Ordered so a broken lower layer is reported before the layers built on it
TEST_FILES = [
    'test_point_codec.py',   # Binary point records
    'test_text_index.py',    # Page text index and context windows
    'test_quote_matcher.py', # Bounds and context matching
    'test_store.py',         # SQLAlchemy store, probes, schema upgrade
    'test_reanchorer.py',    # Relayout re-anchoring
    'test_session.py',       # Session cache, undo, worker
    'test_bundle.py',        # JSON bundles
    'test_document.py',      # Identity, layout ids, PyMuPDF text
    'test_cli.py',           # Command line round trips
]


def run_test(test_file: Path) -> bool:
    """Run a single test module under pytest"""
    print(f"\n{'='*70}")
    print(f"Running: {test_file.name}")
    print('='*70)

    result = subprocess.run(
        [sys.executable, "-m", "pytest", "-q", str(test_file)],
        cwd=test_file.parent.parent,
        capture_output=False
    )

    return result.returncode == 0


def main():
    """Run all tests"""
    tests_dir = Path(__file__).parent
    results = {}

    print("🧪 RUNNING ALL TESTS")
    print("="*70)

    for test_name in TEST_FILES:
        test_path = tests_dir / test_name
        if test_path.exists():
            results[test_name] = run_test(test_path)
        else:
            print(f"⚠️  Test file not found: {test_name}")
            results[test_name] = False

    # Summary
    print(f"\n{'='*70}")
    print("📊 TEST SUMMARY")
    print('='*70)

    passed = sum(1 for success in results.values() if success)
    total = len(results)

    for test_name, success in results.items():
        status = "✅ PASS" if success else "❌ FAIL"
        print(f"  {status}: {test_name}")

    print(f"\n{'='*70}")
    if passed == total:
        print(f"✅ ALL TESTS PASSED ({passed}/{total})")
        return 0
    else:
        print(f"❌ SOME TESTS FAILED ({passed}/{total} passed)")
        return 1


if __name__ == '__main__':
    sys.exit(main())
