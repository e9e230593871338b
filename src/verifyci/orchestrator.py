# orchestrator.py
from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Dict, Optional

from .errors import ExecutionError, JobCancelled, JobTimeout, ProvisioningError
from .executor import CommandExecutor, SubprocessExecutor
from .log import get_logger
from .model import (
    ErrorReason,
    EventDescriptor,
    JobResult,
    JobSpec,
    JobStatus,
    PipelineDefinition,
    RunReport,
)
from .report import build_report, not_triggered
from .toolchain import ToolchainProvisioner

logger = get_logger("verifyci.orchestrator")

# trigger event ---> provision per job ---> run command in checkout ---> report


class Orchestrator:
    """
    Runs every job of a pipeline concurrently against one read-only checkout.

    There is no fail-fast: sibling jobs always run to completion so the
    report covers the whole verification surface. Job-local failures end up
    in the JobResult, a missing checkout included; only definition errors raise.
    """

    def __init__(
        self,
        provisioner: ToolchainProvisioner,
        executor: CommandExecutor | None = None,
        *,
        checkout: str | Path = ".",
        max_workers: int | None = None,
        default_timeout: float | None = None,
        on_job_start: Optional[Callable[[JobSpec], None]] = None,
        on_job_result: Optional[Callable[[JobSpec, JobResult], None]] = None,
    ):
        self.provisioner = provisioner
        self.executor = executor or SubprocessExecutor()
        self.checkout = Path(checkout)
        self.max_workers = max_workers
        self.default_timeout = default_timeout
        self.on_job_start = on_job_start
        self.on_job_result = on_job_result

        self._cancel: threading.Event | None = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Signal the in-flight run (e.g. a superseding trigger arrived)."""
        with self._lock:
            if self._cancel is not None:
                logger.info("cancelling in-flight run")
                self._cancel.set()

    # ------------------------------------------------------------------
    # Single job
    # ------------------------------------------------------------------

    def _run_job(self, spec: JobSpec, checkout: Path, cancel: threading.Event) -> JobResult:
        start = time.monotonic()

        def finish(status: JobStatus, **kw) -> JobResult:
            return JobResult(job_name=spec.name, status=status, duration=time.monotonic() - start, **kw)

        if cancel.is_set():
            return finish(JobStatus.ERRORED, reason=ErrorReason.CANCELLED, message="cancelled before start")

        if self.on_job_start is not None:
            self.on_job_start(spec)

        # bounds the toolchain install and the command separately
        timeout = spec.timeout if spec.timeout is not None else self.default_timeout
        try:
            environment = self.provisioner.provision(
                spec.toolchain, spec.required_components, job=spec.name, timeout=timeout, cancel=cancel
            )
        except ProvisioningError as e:
            logger.warning("[%s] provisioning failed: %s", spec.name, e.message)
            return finish(JobStatus.ERRORED, reason=ErrorReason.PROVISIONING, message=str(e))
        except JobCancelled as e:
            return finish(JobStatus.ERRORED, reason=ErrorReason.CANCELLED, log=e.log, message="cancelled while provisioning")
        except JobTimeout as e:
            return finish(JobStatus.ERRORED, reason=ErrorReason.TIMEOUT, log=e.log, message=f"{e.message} while provisioning")

        with environment:
            if cancel.is_set():
                return finish(JobStatus.ERRORED, reason=ErrorReason.CANCELLED, message="cancelled before start")

            # toolchain binding last: a job's env can't point at another toolchain
            env: Dict[str, str] = dict(spec.env)
            env.update(environment.env)
            cwd = checkout / spec.cwd if spec.cwd else checkout

            logger.info("[%s] running on %s: %s", spec.name, environment.version, spec.command)
            try:
                outcome = self.executor.execute(
                    spec.command, cwd=cwd, env=env, timeout=timeout, cancel=cancel
                )
            except JobCancelled as e:
                return finish(JobStatus.ERRORED, reason=ErrorReason.CANCELLED, log=e.log, message=e.message)
            except JobTimeout as e:
                return finish(JobStatus.ERRORED, reason=ErrorReason.TIMEOUT, log=e.log, message=e.message)
            except ExecutionError as e:
                return finish(
                    JobStatus.ERRORED,
                    reason=ErrorReason.LAUNCH,
                    exit_code=e.details.get("exit_code"),
                    log=e.log,
                    message=e.message,
                )

        status = JobStatus.PASSED if outcome.exit_code == 0 else JobStatus.FAILED
        return finish(status, exit_code=outcome.exit_code, log=outcome.log)

    # ------------------------------------------------------------------
    # Result collection
    # ------------------------------------------------------------------

    def _collect(self, spec: JobSpec, fut: Future) -> JobResult:
        try:
            result = fut.result()
        except Exception as e:
            logger.exception("[%s] crashed", spec.name)
            result = JobResult(
                job_name=spec.name,
                status=JobStatus.ERRORED,
                reason=ErrorReason.INTERNAL,
                message=f"{type(e).__name__}: {e}",
            )
        logger.info("[%s] %s", spec.name, result.status.value)
        return result

    def _unlaunchable(self, pipeline: PipelineDefinition, trigger: EventDescriptor, message: str) -> RunReport:
        # no job can start, so nothing is provisioned either
        logger.warning("%s: %s", pipeline.name, message)
        results = []
        for spec in pipeline.jobs:
            result = JobResult(job_name=spec.name, status=JobStatus.ERRORED, reason=ErrorReason.LAUNCH, message=message)
            if self.on_job_result is not None:
                self.on_job_result(spec, result)
            results.append(result)
        return build_report(pipeline, trigger, results)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(
        self,
        pipeline: PipelineDefinition,
        trigger: EventDescriptor,
        *,
        cancel: threading.Event | None = None,
    ) -> RunReport:
        if not pipeline.triggers.matches(trigger):
            logger.info("%s: not triggered by %s %s", pipeline.name, trigger.event_kind.value, trigger.ref)
            return not_triggered(pipeline, trigger)

        checkout = self.checkout.resolve()
        if not checkout.is_dir():
            return self._unlaunchable(pipeline, trigger, f"checkout not found: {checkout}")

        cancel = cancel or threading.Event()
        with self._lock:
            self._cancel = cancel
        # "latest stable" must mean the same thing for every job of this run
        self.provisioner.reset()

        results: Dict[str, JobResult] = {}
        workers = self.max_workers or len(pipeline.jobs)

        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="verifyci-job") as pool:
                pending = {
                    pool.submit(self._run_job, spec, checkout, cancel): spec
                    for spec in pipeline.jobs
                }
                while pending:
                    try:
                        for fut in as_completed(list(pending)):
                            spec = pending.pop(fut)
                            result = self._collect(spec, fut)
                            results[spec.name] = result
                            if self.on_job_result is not None:
                                self.on_job_result(spec, result)
                    except KeyboardInterrupt:
                        # keep joining: in-flight jobs see the event and wind down
                        logger.warning("interrupted, cancelling %d job(s)", len(pending))
                        cancel.set()
        finally:
            with self._lock:
                self._cancel = None

        return build_report(pipeline, trigger, results.values(), cancelled=cancel.is_set())
