"""Engine components: fetch → normalize → combine → import → purge."""

from .checkpoint import CheckpointStore, ImportCheckpoint
from .corpus import Corpus, CorpusCombiner
from .dedup import DeduplicationEngine, DuplicateMatch
from .enrichment import Enricher
from .fetcher import FeedFetcher
from .importer import BatchImportEngine, BatchResult
from .normalizer import StreamingNormalizer
from .pacing import Budget, BudgetCheck
from .purge import PurgeResult, Purger
from .records import NormalizedRecord
from .retry import CircuitBreakerRegistry, RetryExecutor, RetryPolicy

__all__ = [
    "BatchImportEngine",
    "BatchResult",
    "Budget",
    "BudgetCheck",
    "CheckpointStore",
    "CircuitBreakerRegistry",
    "Corpus",
    "CorpusCombiner",
    "DeduplicationEngine",
    "DuplicateMatch",
    "Enricher",
    "FeedFetcher",
    "ImportCheckpoint",
    "NormalizedRecord",
    "PurgeResult",
    "Purger",
    "RetryExecutor",
    "RetryPolicy",
    "StreamingNormalizer",
]
