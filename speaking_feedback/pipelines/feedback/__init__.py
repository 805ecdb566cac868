"""Speaking feedback pipeline package.

Modules follow the order in which a feed run executes:

1. `feed_config` – parse stored feed rows into typed step configuration.
2. `cache` – look up content already stored for a step.
3. `merge_tags` – expand prompt templates (`modifiers`, `transcript_format`).
4. `executor` – run one step and store its output (`scoring`).
5. `orchestrator` – run every step of a feed and report lifecycle events.
6. `events` – the progress channel consumed by the SSE controller.
"""

from .cache import ExistingContentCache
from .context import PipelineContext
from .events import DataEvent, DoneEvent, ErrorEvent, EventEmitter, ProgressEvent, encode_sse
from .executor import StepExecutor, ensure_subject
from .feed_config import parse_feed, parse_step
from .merge_tags import MergeTagResolver
from .orchestrator import FeedOrchestrator
from .scoring import extract_score
from .types import (
    BatchPrompt,
    FeedConfig,
    FeedRequest,
    ProviderCallSpec,
    ProviderResponse,
    SinglePrompt,
    StepConfig,
    StepKind,
    SubjectKind,
    SubjectRef,
)

__all__ = [
    "BatchPrompt",
    "DataEvent",
    "DoneEvent",
    "ErrorEvent",
    "EventEmitter",
    "ExistingContentCache",
    "FeedConfig",
    "FeedOrchestrator",
    "FeedRequest",
    "MergeTagResolver",
    "PipelineContext",
    "ProgressEvent",
    "ProviderCallSpec",
    "ProviderResponse",
    "SinglePrompt",
    "StepConfig",
    "StepExecutor",
    "StepKind",
    "SubjectKind",
    "SubjectRef",
    "encode_sse",
    "ensure_subject",
    "extract_score",
    "parse_feed",
    "parse_step",
]
