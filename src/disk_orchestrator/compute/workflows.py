"""
Capture and restore workflows.

Composes the core pieces around the compute control plane:

    capture_disks:        one snapshot per disk (fan-out), then one poller per snapshot
    create_restore_point: collection -> restore point -> poll -> optional compensation
    hydrate_disks:        one managed disk per snapshot (fan-out), then one poller per disk
    attach_disks:         read VM, append data disks at free LUNs, poll the VM
    detach_disks:         read VM, drop data disks in one update, poll, optionally delete them

Every workflow returns a WorkflowReport; none raises for a remote failure.
Deciding whether a partial failure aborts the overall job is up to the caller.
"""

import asyncio
import functools
import json
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field

from disk_orchestrator.compute import resources
from disk_orchestrator.compute.compensation import CompensationResult, ensure_property
from disk_orchestrator.config import Settings
from disk_orchestrator.execution.fanout import FanOutExecutor
from disk_orchestrator.logging_config import workflow_context
from disk_orchestrator.models.batch import BatchKey, BatchReport
from disk_orchestrator.models.enums import ErrorKind, OperationStatus, PollState
from disk_orchestrator.models.operations import ErrorDetail, OperationDescriptor, OperationResult
from disk_orchestrator.models.polling import DEFAULT_FAILURE_STATES, PollOutcome, PollSpec
from disk_orchestrator.polling.poller import CompletionPoller
from disk_orchestrator.retry.executor import RetryingExecutor

logger = structlog.get_logger(__name__)

RESTORE_POINT_COLLECTION_KEY = "restorePointCollection"
RESTORE_POINT_KEY = "restorePoint"
VM_READ_KEY = "virtualMachine"
VM_ATTACH_KEY = "attach"
VM_DETACH_KEY = "detach"

COPY_COMPLETE_STATES = frozenset({"100", "100.0"})


class DiskSource(BaseModel):
    """Where a hydrated disk comes from and how it is provisioned."""

    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    sku: Optional[str] = None
    size_gb: Optional[int] = Field(default=None, ge=1)


@dataclass(frozen=True)
class WorkflowReport:
    """
    Batch results plus poll outcomes, keyed by the same identities.

    Attributes:
        batch: Results of the issuing calls
        polls: Terminal poll outcome per awaited resource
        compensation: Verify-then-patch outcome, when one was requested
        planned: Writes a dry run would have issued, in order
        skipped: Requested names that were not found and left alone
    """

    batch: BatchReport
    polls: dict[BatchKey, PollOutcome] = field(default_factory=dict)
    compensation: Optional[CompensationResult] = None
    planned: list[OperationDescriptor] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def failed_keys(self) -> list[BatchKey]:
        failed = list(self.batch.failed)
        failed.extend(key for key, outcome in self.polls.items() if outcome.failed and key not in failed)
        return failed

    @property
    def all_succeeded(self) -> bool:
        if self.failed_keys:
            return False
        return self.compensation is None or self.compensation.in_effect

    def summary(self) -> dict:
        poll_states: dict[str, int] = {}
        for outcome in self.polls.values():
            poll_states[outcome.state.value] = poll_states.get(outcome.state.value, 0) + 1
        return {
            "batch": self.batch.summary(),
            "polls": poll_states,
            "failed_keys": self.failed_keys,
            "planned": [str(descriptor) for descriptor in self.planned],
            "skipped": self.skipped,
        }


def copy_completion_spec(descriptor: OperationDescriptor, interval: float, timeout: float) -> PollSpec:
    """
    Poll until background copy/hydration reports completionPercent 100.

    A failed provisioningState ends the poll as Failed instead of waiting out
    the deadline.
    """
    return PollSpec(
        descriptor=descriptor,
        state_path=("properties", "completionPercent"),
        success_states=COPY_COMPLETE_STATES,
        failure_states=DEFAULT_FAILURE_STATES,
        progress_path=("properties", "completionPercent"),
        failure_path=("properties", "provisioningState"),
        interval=interval,
        timeout=timeout,
    )


def _workflow(func):
    """Run a workflow method under its own logging context (run_id, workflow, resource_group)."""

    @functools.wraps(func)
    async def wrapper(self, subscription_id: str, resource_group: str, *args, **kwargs):
        with workflow_context(func.__name__, resource_group=resource_group):
            return await func(self, subscription_id, resource_group, *args, **kwargs)

    return wrapper


class DiskWorkflows:
    """
    Multi-disk capture/restore built on the core executors.

    Attributes:
        executor: RetryingExecutor for single calls
        fanout: FanOutExecutor for batches and concurrent polls
        poller: CompletionPoller for provisioning and copy progress
        settings: Application settings (poll interval/timeout)
    """

    def __init__(
        self,
        executor: RetryingExecutor,
        settings: Optional[Settings] = None,
        fanout: Optional[FanOutExecutor] = None,
        poller: Optional[CompletionPoller] = None,
    ):
        self.executor = executor
        self.settings = settings or executor.settings
        self.fanout = fanout or FanOutExecutor(executor, self.settings)
        self.poller = poller or CompletionPoller(executor, self.settings)

    def _provisioning_spec(self, descriptor: OperationDescriptor, progress: bool = False) -> PollSpec:
        return PollSpec(
            descriptor=descriptor,
            progress_path=("properties", "completionPercent") if progress else None,
            interval=self.settings.POLL_INTERVAL,
            timeout=self.settings.POLL_TIMEOUT,
        )

    async def await_all(
        self,
        specs: Mapping[BatchKey, PollSpec],
        concurrency_limit: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> dict[BatchKey, PollOutcome]:
        """Run one poller per spec concurrently."""

        def unit(spec: PollSpec):
            async def run() -> PollOutcome:
                return await self.poller.poll(spec, cancel_event=cancel_event)

            return run

        def cancelled(key: BatchKey) -> PollOutcome:
            return PollOutcome(spec=specs[key], state=PollState.FAILED, cancelled=True)

        def crashed(key: BatchKey, error: Exception) -> PollOutcome:
            logger.error(
                "Poller raised",
                resource=str(key),
                error_type=type(error).__name__,
                error=str(error),
            )
            return PollOutcome(spec=specs[key], state=PollState.FAILED)

        return await self.fanout.run_all(
            {key: unit(spec) for key, spec in specs.items()},
            concurrency_limit=concurrency_limit,
            cancel_event=cancel_event,
            on_cancel=cancelled if cancel_event is not None else None,
            on_error=crashed,
        )

    @_workflow
    async def capture_disks(
        self,
        subscription_id: str,
        resource_group: str,
        location: str,
        disks: Mapping[str, str],
        incremental: bool = True,
        sku: Optional[str] = None,
        tags: Optional[Mapping[str, str]] = None,
        wait: bool = True,
        wait_for_copy: bool = False,
        concurrency_limit: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> WorkflowReport:
        """
        Snapshot every disk concurrently.

        Args:
            disks: Snapshot name -> source managed disk id
            wait: Poll each created snapshot until provisioning completes
            wait_for_copy: Poll until the background copy reaches 100% instead

        Returns:
            WorkflowReport keyed by snapshot name
        """
        descriptors = [
            resources.create_snapshot(
                subscription_id, resource_group, name, location, disk_id, incremental, sku, tags
            )
            for name, disk_id in disks.items()
        ]
        logger.info("Capturing disks", disks=len(descriptors))
        batch = await self.fanout.execute_all(
            descriptors, concurrency_limit=concurrency_limit, cancel_event=cancel_event
        )

        polls: dict[BatchKey, PollOutcome] = {}
        if wait and batch.succeeded:
            specs = {
                key: self._await_spec(
                    resources.get_resource(
                        resources.snapshot_path(subscription_id, resource_group, str(key)),
                        resources.DISK_API_VERSION,
                        key=str(key),
                    ),
                    wait_for_copy,
                )
                for key in batch.succeeded
            }
            polls = await self.await_all(specs, concurrency_limit, cancel_event)

        return WorkflowReport(batch=batch, polls=polls)

    @_workflow
    async def hydrate_disks(
        self,
        subscription_id: str,
        resource_group: str,
        location: str,
        disks: Mapping[str, DiskSource],
        tags: Optional[Mapping[str, str]] = None,
        wait: bool = True,
        wait_for_copy: bool = False,
        dry_run: bool = False,
        concurrency_limit: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> WorkflowReport:
        """
        Create one managed disk per snapshot concurrently.

        Args:
            disks: New disk name -> DiskSource
            wait: Poll each created disk until provisioning completes
            wait_for_copy: Poll until hydration reaches 100% instead
            dry_run: Return the planned creates without issuing them

        Returns:
            WorkflowReport keyed by new disk name
        """
        descriptors = [
            resources.create_disk_from_snapshot(
                subscription_id,
                resource_group,
                name,
                location,
                source.snapshot_id,
                source.sku,
                source.size_gb,
                tags,
            )
            for name, source in disks.items()
        ]
        if dry_run:
            logger.info("Dry run, not creating disks", disks=list(disks))
            return WorkflowReport(batch=BatchReport(results={}, submitted=0), planned=descriptors)

        logger.info("Hydrating disks", disks=len(descriptors))
        batch = await self.fanout.execute_all(
            descriptors, concurrency_limit=concurrency_limit, cancel_event=cancel_event
        )

        polls: dict[BatchKey, PollOutcome] = {}
        if wait and batch.succeeded:
            specs = {
                key: self._await_spec(
                    resources.get_resource(
                        resources.disk_path(subscription_id, resource_group, str(key)),
                        resources.DISK_API_VERSION,
                        key=str(key),
                    ),
                    wait_for_copy,
                )
                for key in batch.succeeded
            }
            polls = await self.await_all(specs, concurrency_limit, cancel_event)

        return WorkflowReport(batch=batch, polls=polls)

    def _await_spec(self, descriptor: OperationDescriptor, wait_for_copy: bool) -> PollSpec:
        if wait_for_copy:
            return copy_completion_spec(
                descriptor, self.settings.POLL_INTERVAL, self.settings.POLL_TIMEOUT
            )
        return self._provisioning_spec(descriptor, progress=True)

    @_workflow
    async def create_restore_point(
        self,
        subscription_id: str,
        resource_group: str,
        collection: str,
        restore_point: str,
        location: Optional[str] = None,
        source_vm_id: Optional[str] = None,
        consistency_mode: Optional[str] = None,
        instant_access_duration_minutes: Optional[int] = None,
        exclude_disk_ids: Optional[Sequence[str]] = None,
        tags: Optional[Mapping[str, str]] = None,
        create_collection: bool = True,
        wait: bool = True,
        ensure_duration: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> WorkflowReport:
        """
        Create (or update) a restore point collection and a restore point in it.

        The collection must exist before the restore point, so the two calls
        run in sequence. With ``ensure_duration`` the instant access duration
        is read back and patched if the create call dropped it.

        Raises:
            ValueError: create_collection without location/source_vm_id
        """
        results: dict[BatchKey, OperationResult] = {}

        if create_collection:
            if not location or not source_vm_id:
                raise ValueError("location and source_vm_id are required to create the collection")
            logger.info("Creating/updating restore point collection", collection=collection)
            collection_result = await self.executor.execute(
                resources.create_restore_point_collection(
                    subscription_id, resource_group, collection, location, source_vm_id, True, tags
                )
            )
            results[RESTORE_POINT_COLLECTION_KEY] = collection_result
            if collection_result.failed:
                return WorkflowReport(batch=BatchReport(results=results, submitted=1))

        logger.info("Creating restore point", collection=collection, restore_point=restore_point)
        rp_result = await self.executor.execute(
            resources.create_restore_point(
                subscription_id,
                resource_group,
                collection,
                restore_point,
                consistency_mode,
                instant_access_duration_minutes,
                exclude_disk_ids,
            )
        )
        results[RESTORE_POINT_KEY] = rp_result
        batch = BatchReport(results=results, submitted=len(results))

        polls: dict[BatchKey, PollOutcome] = {}
        if rp_result.succeeded and wait:
            spec = self._provisioning_spec(
                resources.get_restore_point(subscription_id, resource_group, collection, restore_point)
            )
            polls[RESTORE_POINT_KEY] = await self.poller.poll(spec, cancel_event=cancel_event)
        elif rp_result.succeeded:
            logger.info("Not waiting for provisioning completion", restore_point=restore_point)

        compensation: Optional[CompensationResult] = None
        provisioned = rp_result.succeeded and all(outcome.succeeded for outcome in polls.values())
        if ensure_duration and instant_access_duration_minutes is not None and provisioned:
            compensation = await ensure_property(
                self.executor,
                resources.restore_point_path(subscription_id, resource_group, collection, restore_point),
                ("properties", "instantAccessDurationMinutes"),
                instant_access_duration_minutes,
                api_version=resources.RESTORE_POINT_API_VERSION,
            )

        return WorkflowReport(batch=batch, polls=polls, compensation=compensation)

    async def _read_vm(self, vm_path: str, vm_name: str) -> tuple[OperationResult, Optional[dict]]:
        """GET the VM; a 2xx whose body is not a JSON object counts as a failed read."""
        result = await self.executor.execute(
            resources.get_resource(vm_path, resources.VM_API_VERSION, key=vm_name)
        )
        if result.failed:
            return result, None
        try:
            vm = result.payload_json()
        except json.JSONDecodeError:
            vm = None
        if isinstance(vm, dict):
            return result, vm

        logger.error("VM read returned no JSON object", vm=vm_name, payload=result.payload[:200])
        failed = result.model_copy(
            update={
                "status": OperationStatus.FAILED,
                "error": ErrorDetail(kind=ErrorKind.REMOTE, message="VM payload is not a JSON object"),
            }
        )
        return failed, None

    async def _update_vm(
        self,
        vm_path: str,
        vm_name: str,
        key: str,
        update: OperationDescriptor,
        results: dict[BatchKey, OperationResult],
        wait: bool,
        cancel_event: Optional[asyncio.Event],
    ) -> dict[BatchKey, PollOutcome]:
        """Issue one VM update, record it under ``key`` and optionally poll the VM."""
        update_result = await self.executor.execute(update)
        results[key] = update_result

        polls: dict[BatchKey, PollOutcome] = {}
        if update_result.succeeded and wait:
            spec = self._provisioning_spec(
                resources.get_resource(vm_path, resources.VM_API_VERSION, key=vm_name)
            )
            polls[key] = await self.poller.poll(spec, cancel_event=cancel_event)
        return polls

    @_workflow
    async def attach_disks(
        self,
        subscription_id: str,
        resource_group: str,
        vm_name: str,
        disk_ids: Sequence[str],
        starting_lun: Optional[int] = None,
        wait: bool = True,
        dry_run: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> WorkflowReport:
        """
        Attach managed disks to a VM at consecutive LUNs.

        LUNs start at ``starting_lun`` or right after the highest LUN in use.
        Attachment is one VM update, so it is not fanned out.

        Raises:
            ValueError: Requested LUNs collide with disks already attached
        """
        vm_path = resources.virtual_machine_path(subscription_id, resource_group, vm_name)
        read_result, vm = await self._read_vm(vm_path, vm_name)
        results: dict[BatchKey, OperationResult] = {VM_READ_KEY: read_result}
        if vm is None:
            return WorkflowReport(batch=BatchReport(results=results, submitted=1))

        existing = resources.vm_data_disks(vm)
        used_luns = {disk.get("lun") for disk in existing}
        if starting_lun is None:
            starting_lun = max((lun for lun in used_luns if lun is not None), default=-1) + 1

        new_disks = [
            {"lun": starting_lun + offset, "createOption": "Attach", "managedDisk": {"id": disk_id}}
            for offset, disk_id in enumerate(disk_ids)
        ]
        collisions = sorted(d["lun"] for d in new_disks if d["lun"] in used_luns)
        if collisions:
            raise ValueError(f"LUNs already in use on {vm_name}: {collisions}")

        update = resources.patch_resource(
            vm_path,
            {"properties": {"storageProfile": {"dataDisks": existing + new_disks}}},
            resources.VM_API_VERSION,
        )
        if dry_run:
            logger.info("Dry run, not attaching disks", vm=vm_name, first_lun=starting_lun)
            return WorkflowReport(batch=BatchReport(results=results, submitted=1), planned=[update])

        logger.info(
            "Attaching disks",
            vm=vm_name,
            disks=len(new_disks),
            first_lun=starting_lun,
        )
        polls = await self._update_vm(vm_path, vm_name, VM_ATTACH_KEY, update, results, wait, cancel_event)
        return WorkflowReport(batch=BatchReport(results=results, submitted=2), polls=polls)

    @_workflow
    async def detach_disks(
        self,
        subscription_id: str,
        resource_group: str,
        vm_name: str,
        disk_names: Optional[Sequence[str]] = None,
        delete: bool = False,
        wait: bool = True,
        dry_run: bool = False,
        concurrency_limit: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> WorkflowReport:
        """
        Detach data disks from a VM in one update, optionally deleting them afterwards.

        Args:
            disk_names: Data disks to detach by name (None detaches all of them)
            delete: Delete the detached managed disks once the VM update is done
            wait: Poll the VM until the update completes
            dry_run: Read the VM and return the planned writes without issuing them

        Requested names not attached to the VM are logged and listed in
        ``skipped``. Deletes are keyed by disk name and only run after the
        update succeeded (and, with ``wait``, finished provisioning).
        """
        vm_path = resources.virtual_machine_path(subscription_id, resource_group, vm_name)
        read_result, vm = await self._read_vm(vm_path, vm_name)
        results: dict[BatchKey, OperationResult] = {VM_READ_KEY: read_result}
        if vm is None:
            return WorkflowReport(batch=BatchReport(results=results, submitted=1))

        existing = resources.vm_data_disks(vm)
        skipped: list[str] = []
        if disk_names is None:
            targets = existing
        else:
            requested = list(dict.fromkeys(name.strip() for name in disk_names if name.strip()))
            attached = {disk.get("name") for disk in existing}
            skipped = [name for name in requested if name not in attached]
            for name in skipped:
                logger.error("Disk not attached to VM, skipping", vm=vm_name, disk=name)
            targets = [disk for disk in existing if disk.get("name") in requested]

        if not targets:
            logger.info("No data disks to detach", vm=vm_name)
            return WorkflowReport(batch=BatchReport(results=results, submitted=1), skipped=skipped)

        remaining = [disk for disk in existing if disk not in targets]
        update = resources.patch_resource(
            vm_path,
            {"properties": {"storageProfile": {"dataDisks": remaining}}},
            resources.VM_API_VERSION,
        )

        deletes: list[OperationDescriptor] = []
        if delete:
            for disk in targets:
                disk_id = (disk.get("managedDisk") or {}).get("id")
                if not disk_id:
                    logger.warning("No managed disk id, not deleting", vm=vm_name, disk=disk.get("name"))
                    continue
                name = disk.get("name") or disk_id.rsplit("/", 1)[-1]
                deletes.append(resources.delete_resource(disk_id, resources.DISK_API_VERSION, key=name))

        if dry_run:
            logger.info("Dry run, not detaching disks", vm=vm_name, disks=len(targets), deletes=len(deletes))
            return WorkflowReport(
                batch=BatchReport(results=results, submitted=1),
                planned=[update, *deletes],
                skipped=skipped,
            )

        logger.info(
            "Detaching disks",
            vm=vm_name,
            disks=[disk.get("name") for disk in targets],
            delete=delete,
        )
        polls = await self._update_vm(vm_path, vm_name, VM_DETACH_KEY, update, results, wait, cancel_event)

        detached = results[VM_DETACH_KEY].succeeded and all(outcome.succeeded for outcome in polls.values())
        if deletes and detached:
            logger.info("Deleting detached disks", vm=vm_name, disks=len(deletes))
            delete_batch = await self.fanout.execute_all(
                deletes, concurrency_limit=concurrency_limit, cancel_event=cancel_event
            )
            results.update(delete_batch.results)
        elif deletes:
            logger.warning("VM update did not complete, keeping detached disks", vm=vm_name)

        return WorkflowReport(
            batch=BatchReport(results=results, submitted=len(results)),
            polls=polls,
            skipped=skipped,
        )
