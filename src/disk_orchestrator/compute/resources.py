"""
Compute control-plane resources: paths, request bodies and descriptors.

Everything here is caller-side glue for the core executors. Bodies are plain
dicts (JSON-encoded by the transport); descriptors carry the API version of
the resource provider they target.
"""

from typing import Any, Iterable, Mapping, Optional

from disk_orchestrator.models.operations import OperationDescriptor

COMPUTE_PROVIDER = "Microsoft.Compute"
RESTORE_POINT_API_VERSION = "2025-04-01"
DISK_API_VERSION = "2024-03-02"
VM_API_VERSION = "2024-07-01"


def _resource_group_path(subscription_id: str, resource_group: str) -> str:
    return f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"


def restore_point_collection_path(subscription_id: str, resource_group: str, collection: str) -> str:
    return (
        f"{_resource_group_path(subscription_id, resource_group)}"
        f"/providers/{COMPUTE_PROVIDER}/restorePointCollections/{collection}"
    )


def restore_point_path(
    subscription_id: str, resource_group: str, collection: str, restore_point: str
) -> str:
    return (
        f"{restore_point_collection_path(subscription_id, resource_group, collection)}"
        f"/restorePoints/{restore_point}"
    )


def snapshot_path(subscription_id: str, resource_group: str, name: str) -> str:
    return f"{_resource_group_path(subscription_id, resource_group)}/providers/{COMPUTE_PROVIDER}/snapshots/{name}"


def disk_path(subscription_id: str, resource_group: str, name: str) -> str:
    return f"{_resource_group_path(subscription_id, resource_group)}/providers/{COMPUTE_PROVIDER}/disks/{name}"


def virtual_machine_path(subscription_id: str, resource_group: str, name: str) -> str:
    return (
        f"{_resource_group_path(subscription_id, resource_group)}"
        f"/providers/{COMPUTE_PROVIDER}/virtualMachines/{name}"
    )


# === Request bodies ===


def restore_point_collection_body(
    location: str,
    source_vm_id: str,
    instant_access: bool = True,
    tags: Optional[Mapping[str, str]] = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "location": location,
        "properties": {
            "source": {"id": source_vm_id},
            "instantAccess": instant_access,
        },
    }
    if tags:
        body["tags"] = dict(tags)
    return body


def restore_point_body(
    name: str,
    consistency_mode: Optional[str] = None,
    instant_access_duration_minutes: Optional[int] = None,
    exclude_disk_ids: Optional[Iterable[str]] = None,
) -> dict[str, Any]:
    """Restore point body; unset options are left out rather than sent as null."""
    properties: dict[str, Any] = {}
    if consistency_mode:
        properties["consistencyMode"] = consistency_mode
    if instant_access_duration_minutes is not None:
        properties["instantAccessDurationMinutes"] = instant_access_duration_minutes
    excluded = [{"id": disk_id} for disk_id in exclude_disk_ids or ()]
    if excluded:
        properties["excludeDisks"] = excluded
    return {"name": name, "properties": properties}


def snapshot_body(
    location: str,
    source_disk_id: str,
    incremental: bool = True,
    sku: Optional[str] = None,
    tags: Optional[Mapping[str, str]] = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "location": location,
        "properties": {
            "creationData": {"createOption": "Copy", "sourceResourceId": source_disk_id},
            "incremental": incremental,
        },
    }
    if sku:
        body["sku"] = {"name": sku}
    if tags:
        body["tags"] = dict(tags)
    return body


def disk_from_snapshot_body(
    location: str,
    snapshot_id: str,
    sku: Optional[str] = None,
    size_gb: Optional[int] = None,
    tags: Optional[Mapping[str, str]] = None,
) -> dict[str, Any]:
    properties: dict[str, Any] = {
        "creationData": {"createOption": "Copy", "sourceResourceId": snapshot_id},
    }
    if size_gb is not None:
        properties["diskSizeGB"] = size_gb
    body: dict[str, Any] = {"location": location, "properties": properties}
    if sku:
        body["sku"] = {"name": sku}
    if tags:
        body["tags"] = dict(tags)
    return body


# === Descriptors ===


def create_restore_point_collection(
    subscription_id: str,
    resource_group: str,
    collection: str,
    location: str,
    source_vm_id: str,
    instant_access: bool = True,
    tags: Optional[Mapping[str, str]] = None,
) -> OperationDescriptor:
    return OperationDescriptor(
        method="PUT",
        url=restore_point_collection_path(subscription_id, resource_group, collection),
        body=restore_point_collection_body(location, source_vm_id, instant_access, tags),
        api_version=RESTORE_POINT_API_VERSION,
        key=collection,
    )


def create_restore_point(
    subscription_id: str,
    resource_group: str,
    collection: str,
    restore_point: str,
    consistency_mode: Optional[str] = None,
    instant_access_duration_minutes: Optional[int] = None,
    exclude_disk_ids: Optional[Iterable[str]] = None,
) -> OperationDescriptor:
    return OperationDescriptor(
        method="PUT",
        url=restore_point_path(subscription_id, resource_group, collection, restore_point),
        body=restore_point_body(
            restore_point, consistency_mode, instant_access_duration_minutes, exclude_disk_ids
        ),
        api_version=RESTORE_POINT_API_VERSION,
        key=restore_point,
    )


def get_restore_point(
    subscription_id: str, resource_group: str, collection: str, restore_point: str
) -> OperationDescriptor:
    return OperationDescriptor(
        method="GET",
        url=restore_point_path(subscription_id, resource_group, collection, restore_point),
        api_version=RESTORE_POINT_API_VERSION,
        key=restore_point,
    )


def get_restore_point_instance_view(
    subscription_id: str, resource_group: str, collection: str, restore_point: str
) -> OperationDescriptor:
    path = restore_point_path(subscription_id, resource_group, collection, restore_point)
    return OperationDescriptor(
        method="GET",
        url=f"{path}?$expand=instanceView",
        api_version=RESTORE_POINT_API_VERSION,
        key=restore_point,
    )


def create_snapshot(
    subscription_id: str,
    resource_group: str,
    name: str,
    location: str,
    source_disk_id: str,
    incremental: bool = True,
    sku: Optional[str] = None,
    tags: Optional[Mapping[str, str]] = None,
) -> OperationDescriptor:
    return OperationDescriptor(
        method="PUT",
        url=snapshot_path(subscription_id, resource_group, name),
        body=snapshot_body(location, source_disk_id, incremental, sku, tags),
        api_version=DISK_API_VERSION,
        key=name,
    )


def create_disk_from_snapshot(
    subscription_id: str,
    resource_group: str,
    name: str,
    location: str,
    snapshot_id: str,
    sku: Optional[str] = None,
    size_gb: Optional[int] = None,
    tags: Optional[Mapping[str, str]] = None,
) -> OperationDescriptor:
    return OperationDescriptor(
        method="PUT",
        url=disk_path(subscription_id, resource_group, name),
        body=disk_from_snapshot_body(location, snapshot_id, sku, size_gb, tags),
        api_version=DISK_API_VERSION,
        key=name,
    )


def get_resource(
    resource_id: str, api_version: Optional[str] = None, key: Optional[str] = None
) -> OperationDescriptor:
    return OperationDescriptor(method="GET", url=resource_id, api_version=api_version, key=key)


def patch_resource(
    resource_id: str, body: Mapping[str, Any], api_version: Optional[str] = None
) -> OperationDescriptor:
    return OperationDescriptor(method="PATCH", url=resource_id, body=dict(body), api_version=api_version)


def delete_resource(
    resource_id: str, api_version: Optional[str] = None, key: Optional[str] = None
) -> OperationDescriptor:
    return OperationDescriptor(method="DELETE", url=resource_id, api_version=api_version, key=key)


# === Response helpers ===


def vm_data_disks(vm: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Data disk entries of a virtual machine payload (empty list when none)."""
    storage = vm.get("properties", {}).get("storageProfile", {})
    return list(storage.get("dataDisks") or [])


def vm_disk_ids(vm: Mapping[str, Any], include_os_disk: bool = False) -> dict[str, str]:
    """
    Managed disk ids of a VM keyed by disk name.

    Unmanaged (VHD) disks have no managed disk id and are skipped.
    """
    storage = vm.get("properties", {}).get("storageProfile", {})
    disks: dict[str, str] = {}
    if include_os_disk:
        os_disk = storage.get("osDisk") or {}
        os_id = (os_disk.get("managedDisk") or {}).get("id")
        if os_id:
            disks[os_disk.get("name") or os_id.rsplit("/", 1)[-1]] = os_id
    for disk in vm_data_disks(vm):
        disk_id = (disk.get("managedDisk") or {}).get("id")
        if disk_id:
            disks[disk.get("name") or disk_id.rsplit("/", 1)[-1]] = disk_id
    return disks
