"""
AdStitch Core Module

Contains the shared building blocks:
- models: GenerationJob / Asset / Clip data model
- job_store: atomic per-job repositories
- cmd_runner: subprocess execution with consistent error handling
- temp_files: scoped temporary workspaces and atomic ffmpeg writes
"""

from .models import (
    Asset,
    AssetStatus,
    Clip,
    CompositionOptions,
    GenerationJob,
    JobStatus,
    Segment,
    StitchAdjustment,
    Storyboard,
    TimingHint,
    derive_job_status,
)

__all__ = [
    "Asset",
    "AssetStatus",
    "Clip",
    "CompositionOptions",
    "GenerationJob",
    "JobStatus",
    "Segment",
    "StitchAdjustment",
    "Storyboard",
    "TimingHint",
    "derive_job_status",
]
