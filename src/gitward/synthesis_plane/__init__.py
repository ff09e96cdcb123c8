"""
gitward — synthesis plane

File: src/gitward/synthesis_plane/__init__.py
Last updated: 2026-10-19

Purpose
- Synthesis plane: bounded prompts, AI backend calls with retry, and typed results.

What should be included in this file
- Public pipeline, prompt, payload, retry and suggestion interfaces.

Functional requirements
- Must reject injection-shaped input before any spawn.

Non-functional requirements
- Must bound attempts and backoff per call.
"""

from gitward.synthesis_plane.payload import (
    ParsedPayload,
    extract_json_object,
    parse_payload,
    strip_fences,
    unwrap_envelope,
)
from gitward.synthesis_plane.pipeline import (
    ConflictSection,
    PipelineResponse,
    RequestPipeline,
)
from gitward.synthesis_plane.prompt_builder import (
    BuiltPrompt,
    PromptFragments,
    TrustedInstructions,
    build_prompt,
    check_fragment_limits,
    diff_excerpt,
    render_instructions,
)
from gitward.synthesis_plane.retry import (
    BackoffConfig,
    RetryState,
    compute_backoff_delay,
    run_with_retries,
)
from gitward.synthesis_plane.suggestions import (
    AUTO_RESOLVE_CONFIDENCE_THRESHOLD,
    BranchSuggestion,
    ChangeAnalysis,
    CommitSuggestion,
    ComprehensiveAnalysis,
    ConflictResolution,
    ImpactLevel,
    PullRequestSuggestion,
    ResolutionStrategy,
    ResolvedFile,
)

__all__ = [
    "AUTO_RESOLVE_CONFIDENCE_THRESHOLD",
    "BackoffConfig",
    "BranchSuggestion",
    "BuiltPrompt",
    "ChangeAnalysis",
    "CommitSuggestion",
    "ComprehensiveAnalysis",
    "ConflictResolution",
    "ConflictSection",
    "ImpactLevel",
    "ParsedPayload",
    "PipelineResponse",
    "PromptFragments",
    "PullRequestSuggestion",
    "RequestPipeline",
    "ResolutionStrategy",
    "ResolvedFile",
    "RetryState",
    "TrustedInstructions",
    "build_prompt",
    "check_fragment_limits",
    "compute_backoff_delay",
    "diff_excerpt",
    "extract_json_object",
    "parse_payload",
    "render_instructions",
    "run_with_retries",
    "strip_fences",
    "unwrap_envelope",
]
