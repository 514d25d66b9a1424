from .dsl import build, bundle, definition, job, matrix, param, secret, sh, uses, wf, JobBuilder
from .errors import PipelineError
from .model import Bundle, BundleCall, Definition, Job, Param, Reference, Secret, Step
from .resolver import Resolver
from .runner import PipelineRequest, PipelineResult, run_pipeline
from .store import LocalDefinitionStore, MemoryDefinitionStore

__all__ = [
    "build", "bundle", "definition", "job", "matrix", "param", "secret", "sh", "uses", "wf", "JobBuilder",
    "PipelineError",
    "Bundle", "BundleCall", "Definition", "Job", "Param", "Reference", "Secret", "Step",
    "Resolver",
    "PipelineRequest", "PipelineResult", "run_pipeline",
    "LocalDefinitionStore", "MemoryDefinitionStore",
]
