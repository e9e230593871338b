# workflow.py
from __future__ import annotations

import runpy
from pathlib import Path

from .errors import WorkflowError
from .model import PipelineDefinition

DEFAULT_WORKFLOW = "verifyci_workflow.py"


def find_workflow_files(directory: str | Path = ".") -> list[Path]:
    """verifyci_workflow.py first, then any other *_workflow.py."""
    current_dir = Path(directory)
    workflow_files = []

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in sorted(current_dir.glob("*_workflow.py")):
        if path != default_workflow:
            workflow_files.append(path)

    return workflow_files


def load_pipeline(path: str | Path) -> PipelineDefinition:
    """
    Load a pipeline from a python file path.

    The file must define either:
      - define_pipeline() -> PipelineDefinition
      - PIPELINE = PipelineDefinition(...)

    Definition errors (duplicate job names, empty pipeline) raised while
    the file runs propagate unchanged.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise WorkflowError(f"Workflow file not found: {wf_path}", path=str(wf_path))
    if wf_path.suffix != ".py":
        raise WorkflowError(f"Workflow must be a .py file, got: {wf_path.name}", path=str(wf_path))

    module_name = f"verifyci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    definition = None
    if callable(globals_dict.get("define_pipeline")):
        definition = globals_dict["define_pipeline"]()
    elif "PIPELINE" in globals_dict:
        definition = globals_dict["PIPELINE"]

    if not isinstance(definition, PipelineDefinition):
        raise WorkflowError(
            "Workflow must return/define a PipelineDefinition. "
            "Define define_pipeline() -> PipelineDefinition or PIPELINE = pipeline(...).",
            path=str(wf_path),
        )

    return definition
