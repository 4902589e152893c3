from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
from pytest_bdd import given, parsers, then, when

from services.ota.client import OtaUpdater
from services.ota.errors import ContentIntegrityError, OtaError
from tests.unit.ota_test_utils import FakeOpener, build_store, build_tracker, zip_bytes


@dataclass
class UpdateWorld:
    updater: OtaUpdater
    server: FakeOpener
    descriptor: dict[str, Any] | None = None
    launched_bundle: Path | None = None
    error: Exception | None = None


def _publish(world: UpdateWorld, package_hash: str, version: str) -> dict[str, Any]:
    url = f"https://updates.example.com/{package_hash}.zip"
    world.server.serve(
        url,
        zip_bytes({"build/index.android.bundle": f"bundle {package_hash}".encode("utf-8")}),
        chunk_size=64,
    )
    world.descriptor = {"downloadUrl": url, "versionName": version, "packageHash": package_hash}
    return world.descriptor


@pytest.fixture
def ota_world(tmp_path: Path) -> UpdateWorld:
    server = FakeOpener()
    updater = OtaUpdater(build_store(tmp_path / "OTAUpdates", server), build_tracker(), app_version="1.0.0")
    return UpdateWorld(updater=updater, server=server)


@given(parsers.parse('an update server publishing version "{version}" as package "{package_hash}"'))
def publish_update(ota_world: UpdateWorld, version: str, package_hash: str) -> None:
    _publish(ota_world, package_hash, version)


@given(parsers.parse('package "{package_hash}" with version "{version}" is installed and confirmed'))
def installed_and_confirmed(ota_world: UpdateWorld, package_hash: str, version: str) -> None:
    descriptor = _publish(ota_world, package_hash, version)
    package = ota_world.updater.download_package(descriptor)
    ota_world.updater.install_package(package)
    ota_world.updater.prepare_launch()
    ota_world.updater.notify_app_ready()


@given(parsers.parse('an update server that drops the connection while sending package "{package_hash}"'))
def truncated_update(ota_world: UpdateWorld, package_hash: str) -> None:
    url = f"https://updates.example.com/{package_hash}.zip"
    payload = zip_bytes({"index.android.bundle": b"partial"})
    ota_world.server.serve(url, payload[:-10], content_length=len(payload))
    ota_world.descriptor = {"downloadUrl": url, "versionName": "9.9.9", "packageHash": package_hash}


@when("the host downloads and installs the update")
def download_and_install(ota_world: UpdateWorld) -> None:
    assert ota_world.descriptor is not None
    assert ota_world.updater.is_update_available(ota_world.descriptor)
    package = ota_world.updater.download_package(ota_world.descriptor)
    ota_world.updater.install_package(package)


@when("the host tries to download the update")
def try_download(ota_world: UpdateWorld) -> None:
    assert ota_world.descriptor is not None
    try:
        ota_world.updater.download_package(ota_world.descriptor)
    except OtaError as exc:
        ota_world.error = exc


@when("the host launches")
def launch(ota_world: UpdateWorld) -> None:
    ota_world.launched_bundle = ota_world.updater.prepare_launch()


@when("the host reports that the bundle started")
def confirm_launch(ota_world: UpdateWorld) -> None:
    ota_world.updater.notify_app_ready()


@when("the host clears all updates")
def clear_updates(ota_world: UpdateWorld) -> None:
    ota_world.updater.clear_updates()


@then(parsers.parse('the host loads the bundle of package "{package_hash}"'))
def loads_package_bundle(ota_world: UpdateWorld, package_hash: str) -> None:
    bundle = ota_world.updater.prepare_launch()
    assert bundle is not None
    assert bundle.read_text(encoding="utf-8") == f"bundle {package_hash}"


@then("the host loads its built-in bundle")
def loads_builtin_bundle(ota_world: UpdateWorld) -> None:
    assert ota_world.updater.prepare_launch() is None


@then("no update is pending")
def nothing_pending(ota_world: UpdateWorld) -> None:
    assert ota_world.updater.tracker.get_pending_update() is None


@then(parsers.parse('package "{package_hash}" is recorded as failed'))
def recorded_as_failed(ota_world: UpdateWorld, package_hash: str) -> None:
    assert ota_world.updater.tracker.is_failed_hash(package_hash)


@then("the update is no longer offered")
def update_not_offered(ota_world: UpdateWorld) -> None:
    assert ota_world.descriptor is not None
    assert not ota_world.updater.is_update_available(ota_world.descriptor)


@then("the download fails with an integrity error")
def download_failed(ota_world: UpdateWorld) -> None:
    assert isinstance(ota_world.error, ContentIntegrityError)


@then(parsers.parse('no folder exists for package "{package_hash}"'))
def no_package_folder(ota_world: UpdateWorld, package_hash: str) -> None:
    assert not ota_world.updater.store.package_folder(package_hash).exists()
