import json

import pytest


@pytest.fixture
def file_list_result():
    """Analysis result with only a flat fileList on a single layer."""
    return {
        "image": {"sizeBytes": 1000, "inefficientBytes": 42, "efficiencyScore": 0.958},
        "layer": [
            {
                "index": 0,
                "id": "layer-0",
                "digestId": "sha256:aaa",
                "command": "COPY app /app",
                "sizeBytes": 42,
                "fileList": [
                    {"path": "app/main.js", "sizeBytes": 42, "nodeType": "file", "changeKind": "removed"},
                ],
            }
        ],
    }


@pytest.fixture
def native_result():
    """Analysis result carrying native nested trees in analyzer-style keys."""
    return {
        "image": {"sizeBytes": 300, "inefficientBytes": 20, "efficiencyScore": 0.9},
        "fileTree": [
            {
                "name": "etc",
                "path": "etc",
                "isDir": True,
                "children": [
                    {"name": "hosts", "path": "etc/hosts", "size": "120", "diffType": "Modified"},
                    {"name": "passwd", "path": "etc/passwd", "size": 80, "diffType": "same"},
                ],
            },
            {"name": "tmp.log", "path": "tmp.log", "size": 20, "diffType": "deleted"},
        ],
        "layer": [
            {
                "index": 0,
                "id": "base",
                "digestId": "sha256:base",
                "command": "FROM scratch",
                "sizeBytes": 200,
                "tree": [{"name": "etc", "path": "etc", "isDir": True}],
            },
            {
                "index": 1,
                "id": "top",
                "digestId": "sha256:top",
                "command": "RUN touch /tmp.log",
                "sizeBytes": 100,
            },
        ],
    }


@pytest.fixture
def layered_file_list_result():
    """Two layers of flat changes where the second shadows a directory with a file."""
    return {
        "layers": [
            {
                "index": 0,
                "id": "one",
                "fileList": [
                    {"path": "opt/tool/bin", "sizeBytes": 10, "nodeType": "file", "changeKind": "added"},
                    {"path": "opt/tool/lib", "sizeBytes": 5, "nodeType": "file", "changeKind": "added"},
                    {"path": "usr/bin/sh", "sizeBytes": 7, "nodeType": "file", "changeKind": "added"},
                ],
            },
            {
                "index": 1,
                "id": "two",
                "fileList": [
                    {"path": "opt", "sizeBytes": 3, "nodeType": "link", "changeKind": "modified"},
                ],
            },
        ],
    }


@pytest.fixture
def write_json(tmp_path):
    """Write an object as JSON into the test directory and return its path."""
    def _write(name, data):
        path = tmp_path / name
        path.write_text(json.dumps(data))
        return str(path)
    return _write
