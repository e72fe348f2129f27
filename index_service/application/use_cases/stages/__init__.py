from .base_stage import PipelineStageUseCase, StageOutcome
from .manifest_stage import ManifestStage
from .extract_stage import ExtractStage
from .chunk_stage import ChunkStage
from .embed_stage import EmbedStage
from .summary_stage import SummaryStage

__all__ = [
    "PipelineStageUseCase",
    "StageOutcome",
    "ManifestStage",
    "ExtractStage",
    "ChunkStage",
    "EmbedStage",
    "SummaryStage",
]
