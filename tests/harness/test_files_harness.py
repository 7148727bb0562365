import os
import subprocess
import sys

import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
SCRIPT = os.path.join(REPO_ROOT, "json_codec.py")
TEST_DIR = os.path.dirname(__file__)

json_files = sorted(f for f in os.listdir(TEST_DIR) if f.endswith(".json"))

VALID_FILES = [f for f in json_files if f.startswith("pass")]
INVALID_FILES = [f for f in json_files if f.startswith("fail")]

if not VALID_FILES:
    raise RuntimeError("No pass*.json files found in harness directory")
if not INVALID_FILES:
    raise RuntimeError("No fail*.json files found in harness directory")


@pytest.mark.parametrize("filename", VALID_FILES)
def test_valid_json_returns_0(filename):
    path = os.path.join(TEST_DIR, filename)
    result = subprocess.run([sys.executable, SCRIPT, path], capture_output=True, text=True)
    assert result.returncode == 0, f"Expected 0 from {filename}, got {result.returncode}: {result.stderr}"


@pytest.mark.parametrize("filename", INVALID_FILES)
def test_invalid_json_returns_1(filename):
    path = os.path.join(TEST_DIR, filename)
    result = subprocess.run([sys.executable, SCRIPT, path], capture_output=True, text=True)
    assert result.returncode == 1, f"Expected 1 from {filename}, got {result.returncode}"
    assert result.stderr.startswith("SyntaxError: expecting")
