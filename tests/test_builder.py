from __future__ import annotations

import os
import re
from pathlib import Path

import pytest
from fakes import FakeEngine

from huornvm import list_vms, load_vm
from huornvm.bundle import BundleStore
from huornvm.errors import (
    ConfigurationInvalid,
    DiskCreationFailed,
    HuornVMError,
    ProvisioningError,
    VirtualizationNotSupported,
)
from huornvm.models import GIB, VMState
from huornvm.vm import ImageRequirements, VMBuilder, create_disk_image

pytestmark = pytest.mark.usefixtures("eight_core_host")


def _builder(engine: FakeEngine, root: Path) -> VMBuilder:
    return VMBuilder(engine, storage_root=root).from_image(root / "restore.ipsw")


def test_build_creates_loadable_bundle(engine: FakeEngine, tmp_path: Path) -> None:
    vm = (
        _builder(engine, tmp_path)
        .with_name("vm1")
        .with_cpus(4)
        .with_memory(8 * GIB)
        .with_disk_size(GIB)
        .with_display(1280, 800, 110)
        .build()
    )

    assert vm.state == VMState.CREATED
    assert vm.bundle_path == tmp_path / "vm1.huornvm"
    assert (tmp_path / "vm1.huornvm" / "disk.img").stat().st_size == GIB

    loaded = BundleStore(tmp_path).load(vm.bundle_path)
    assert loaded == vm.configuration
    assert (loaded.display_width, loaded.display_height, loaded.display_ppi) == (1280, 800, 110)

    infos = list_vms(tmp_path)
    assert len(infos) == 1
    assert infos[0].name == "vm1"
    assert infos[0].cpu_cores == 4
    assert infos[0].memory_bytes == 8 * GIB
    assert infos[0].disk_size_bytes == os.stat(vm.bundle_path / "disk.img").st_size


def test_build_with_explicit_bundle_and_shared_folder(engine: FakeEngine, tmp_path: Path) -> None:
    bundle = tmp_path / "elsewhere" / "custom.huornvm"

    vm = (
        _builder(engine, tmp_path)
        .with_bundle(bundle)
        .with_shared_folder(tmp_path / "src", "src", read_only=True)
        .with_disk_size(GIB)
        .build()
    )

    assert vm.bundle_path == bundle
    folder = BundleStore(tmp_path).load(bundle).shared_folders[0]
    assert folder.guest_tag == "src"
    assert folder.read_only is True


def test_with_cpus_clamps_to_host(engine: FakeEngine, tmp_path: Path) -> None:
    builder = _builder(engine, tmp_path).with_cpus(64)

    assert builder.configuration().cpu_cores == 8


def test_below_minimum_cpu_leaves_no_loadable_bundle(engine: FakeEngine, tmp_path: Path) -> None:
    engine.requirements = ImageRequirements(min_cpu=4, min_memory=4 * GIB)

    with pytest.raises(ConfigurationInvalid) as exc_info:
        _builder(engine, tmp_path).with_name("vm1").with_cpus(2).with_disk_size(GIB).build()

    assert exc_info.value.reason == "Guest OS requires at least 4 CPU cores"
    assert not (tmp_path / "vm1.huornvm").exists()
    assert list_vms(tmp_path) == []


def test_below_minimum_memory_is_rejected(engine: FakeEngine, tmp_path: Path) -> None:
    with pytest.raises(ConfigurationInvalid, match="at least 4 GB of memory"):
        _builder(engine, tmp_path).with_memory(2 * GIB).with_disk_size(GIB).build()


def test_provision_failure_rolls_back_created_bundle(engine: FakeEngine, tmp_path: Path) -> None:
    engine.provision_error = RuntimeError("installer crashed")

    with pytest.raises(ProvisioningError, match="installer crashed") as exc_info:
        _builder(engine, tmp_path).with_name("vm1").with_disk_size(GIB).build()

    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert not (tmp_path / "vm1.huornvm").exists()


def test_failure_in_existing_bundle_dir_removes_only_its_own_files(engine: FakeEngine, tmp_path: Path) -> None:
    bundle = tmp_path / "vm1.huornvm"
    bundle.mkdir()
    (bundle / "keep.txt").write_text("user data", encoding="utf-8")
    engine.provision_error = HuornVMError("engine refused")

    with pytest.raises(HuornVMError, match="engine refused"):
        _builder(engine, tmp_path).with_name("vm1").with_disk_size(GIB).build()

    assert (bundle / "keep.txt").exists()
    assert not (bundle / "config.json").exists()
    assert not (bundle / "disk.img").exists()
    assert list_vms(tmp_path) == []


def test_failed_rebuild_leaves_existing_vm_loadable(engine: FakeEngine, tmp_path: Path) -> None:
    original = _builder(engine, tmp_path).with_name("vm1").with_cpus(4).with_disk_size(GIB).build()
    engine.requirements = ImageRequirements(min_cpu=4, min_memory=4 * GIB)

    with pytest.raises(ConfigurationInvalid, match="already exists"):
        _builder(engine, tmp_path).with_name("vm1").with_cpus(2).with_disk_size(GIB).build()

    assert BundleStore(tmp_path).load(original.bundle_path) == original.configuration
    assert (original.bundle_path / "disk.img").stat().st_size == GIB


def test_build_into_complete_bundle_is_refused(engine: FakeEngine, tmp_path: Path) -> None:
    original = _builder(engine, tmp_path).with_name("vm1").with_disk_size(GIB).build()
    provisions = [name for name, _arg in engine.calls].count("provision")

    with pytest.raises(ConfigurationInvalid, match=re.escape(str(original.bundle_path))):
        _builder(engine, tmp_path).with_bundle(original.bundle_path).with_name("other").build()

    assert [name for name, _arg in engine.calls].count("provision") == provisions
    assert BundleStore(tmp_path).load(original.bundle_path).name == "vm1"


def test_stray_disk_image_in_target_is_not_overwritten(engine: FakeEngine, tmp_path: Path) -> None:
    bundle = tmp_path / "vm1.huornvm"
    bundle.mkdir()
    (bundle / "disk.img").write_bytes(b"precious")

    with pytest.raises(DiskCreationFailed):
        _builder(engine, tmp_path).with_name("vm1").with_disk_size(GIB).build()

    assert (bundle / "disk.img").read_bytes() == b"precious"


def test_unsupported_host_fails_before_touching_disk(engine: FakeEngine, tmp_path: Path) -> None:
    engine.supported = False

    with pytest.raises(VirtualizationNotSupported):
        _builder(engine, tmp_path).with_name("vm1").build()

    assert list(tmp_path.iterdir()) == []


def test_missing_image_is_a_configuration_error(engine: FakeEngine, tmp_path: Path) -> None:
    with pytest.raises(ConfigurationInvalid, match="No provisioning image provided"):
        VMBuilder(engine, storage_root=tmp_path).build()

    assert engine.calls == []


def test_invalid_draft_surfaces_as_configuration_invalid(engine: FakeEngine, tmp_path: Path) -> None:
    with pytest.raises(ConfigurationInvalid, match="name"):
        _builder(engine, tmp_path).with_name("a/b").build()

    with pytest.raises(ConfigurationInvalid):
        _builder(engine, tmp_path).with_disk_size(0).build()

    with pytest.raises(ConfigurationInvalid):
        _builder(engine, tmp_path).with_name("nul\x00name").build()
    assert list(tmp_path.iterdir()) == []


def test_built_vm_can_be_reloaded_and_started(engine: FakeEngine, tmp_path: Path) -> None:
    vm = _builder(engine, tmp_path).with_name("vm1").with_disk_size(GIB).build()

    reloaded = load_vm(vm.bundle_path, engine)
    reloaded.start()

    assert reloaded.state == VMState.RUNNING
    assert ("restore", vm.bundle_path) in engine.calls


def test_create_disk_image_is_sparse_and_exact(tmp_path: Path) -> None:
    target = create_disk_image(tmp_path / "disk.img", 10 * GIB)

    assert target.stat().st_size == 10 * GIB


def test_create_disk_image_reports_os_failure(tmp_path: Path) -> None:
    with pytest.raises(DiskCreationFailed, match="Failed to create disk file"):
        create_disk_image(tmp_path / "missing" / "disk.img", GIB)


def test_create_disk_image_removes_file_when_sizing_fails(tmp_path: Path) -> None:
    target = tmp_path / "disk.img"

    with pytest.raises(DiskCreationFailed, match="Failed to set disk size"):
        create_disk_image(target, -1)

    assert not target.exists()
