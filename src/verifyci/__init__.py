from .dsl import job, pipeline, matrix, build, JobBuilder
from .model import (
    LATEST_STABLE,
    pinned,
    EventDescriptor,
    EventKind,
    FailPolicy,
    JobResult,
    JobSpec,
    JobStatus,
    PipelineDefinition,
    RunReport,
    RunStatus,
)
from .orchestrator import Orchestrator
from .toolchain import ToolchainProvisioner, RustupSource, HostToolchainSource
from .workflow import load_pipeline

__all__ = [
    "job", "pipeline", "matrix", "build", "JobBuilder",
    "LATEST_STABLE", "pinned",
    "EventDescriptor", "EventKind", "FailPolicy", "JobResult", "JobSpec", "JobStatus",
    "PipelineDefinition", "RunReport", "RunStatus",
    "Orchestrator", "ToolchainProvisioner", "RustupSource", "HostToolchainSource",
    "load_pipeline",
]
