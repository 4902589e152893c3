from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_project_root_on_path() -> None:
    """Guarantee the repository root is discoverable for absolute imports."""

    root = Path(__file__).resolve().parent.parent
    root_str = str(root)
    if root_str not in sys.path:
        sys.path.insert(0, root_str)


_ensure_project_root_on_path()


@pytest.fixture(autouse=True)
def _ota_environment(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """Keep engine state and logs away from the real home directory."""

    documents = tmp_path_factory.mktemp("ota_documents")
    monkeypatch.setenv("OTA_DOCUMENTS_DIR", str(documents))
    monkeypatch.setenv("OTA_LOG_DIR", str(documents / "logs"))
    for name in (
        "OTA_LOG_FILE",
        "OTA_LOG_VERBOSITY",
        "OTA_PACKAGE_ROOT",
        "OTA_BUNDLE_FILE_NAME",
        "OTA_DOWNLOAD_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
