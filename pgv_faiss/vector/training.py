"""
Training gate for index structures that must learn statistics before add/search.
"""

import numpy as np

from ..core.config import MAX_TRAINING_VECTORS
from ..core.errors import VectorIndexError
from ..util.logging import logger
from .index import IVectorIndex
from .types import TrainingState, VectorBatch


class TrainingStateMachine:
    """Tracks Untrained -> Training -> Trained for one index structure.

    Inverted-file structures start Untrained; the first add trains on the
    incoming batch (first MAX_TRAINING_VECTORS rows) unless an explicit train
    already happened. Flat and graph structures start, and stay, Trained.
    """

    def __init__(self, index: IVectorIndex):
        self.index = index
        self.train_count = 0
        if index.family.requires_training and not index.is_trained:
            self.state = TrainingState.UNTRAINED
        else:
            self.state = TrainingState.TRAINED

    @classmethod
    def restore(cls, index: IVectorIndex, state: TrainingState, train_count: int) -> "TrainingStateMachine":
        """Rebuild the gate for a deserialized structure."""
        machine = cls(index)
        if state is TrainingState.TRAINED and not index.is_trained:
            raise VectorIndexError("snapshot claims a trained index but the structure is untrained")
        # A snapshot is never taken mid-training
        machine.state = TrainingState.TRAINED if index.is_trained else TrainingState.UNTRAINED
        machine.train_count = int(train_count)
        return machine

    @property
    def is_trained(self) -> bool:
        return self.state is TrainingState.TRAINED

    def train(self, vectors: np.ndarray) -> bool:
        """Train on `vectors` if still Untrained. Returns True when training ran."""
        if self.state is not TrainingState.UNTRAINED:
            return False

        sample = vectors[:MAX_TRAINING_VECTORS]
        if sample.shape[0] == 0:
            raise VectorIndexError("cannot train on an empty sample")

        family = self.index.family.value
        self.state = TrainingState.TRAINING
        logger.log_training(family, TrainingState.UNTRAINED.value, TrainingState.TRAINING.value, int(sample.shape[0]))
        try:
            self.index.train(sample)
        except Exception as e:
            self.state = TrainingState.UNTRAINED
            logger.log_training(family, TrainingState.TRAINING.value, TrainingState.UNTRAINED.value,
                                int(sample.shape[0]), status="failed", details={"error": str(e)[:200]})
            raise VectorIndexError("index training failed", cause=e) from e

        self.state = TrainingState.TRAINED
        self.train_count += 1
        logger.log_training(family, TrainingState.TRAINING.value, TrainingState.TRAINED.value, int(sample.shape[0]))
        return True

    def before_add(self, batch: VectorBatch) -> None:
        """Train on the head of the incoming batch when the index is still Untrained."""
        if len(batch) == 0:
            return
        if self.state is TrainingState.UNTRAINED:
            self.train(batch.head(MAX_TRAINING_VECTORS))

    def require_trained(self) -> None:
        if self.state is not TrainingState.TRAINED:
            raise VectorIndexError(f"index is not trained (state: {self.state.value})")
