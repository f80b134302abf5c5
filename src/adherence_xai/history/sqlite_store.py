"""SQLite-backed prediction history."""

import json
import logging
import os
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import UnknownPredictionError
from .records import ClassLabel, ConfidenceBand, Prediction, as_utc
from .store import HistoryFilters, HistoryStore

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS predictions (
    seq INTEGER PRIMARY KEY,
    prediction_id TEXT UNIQUE NOT NULL,
    timestamp TEXT NOT NULL,
    model_id TEXT NOT NULL,
    model_name TEXT,
    class_label TEXT NOT NULL,
    probability REAL NOT NULL,
    confidence_band TEXT NOT NULL,
    input_snapshot TEXT
);
CREATE INDEX IF NOT EXISTS idx_predictions_recent ON predictions (timestamp, prediction_id);
CREATE TABLE IF NOT EXISTS ground_truth (
    prediction_id TEXT PRIMARY KEY REFERENCES predictions(prediction_id),
    class_label TEXT NOT NULL,
    recorded_at TEXT NOT NULL
);
"""

_COLUMNS = ("prediction_id, timestamp, model_id, model_name, class_label, "
            "probability, confidence_band, input_snapshot")


def _timestamp_text(moment: datetime) -> str:
    # fixed width UTC text so lexical order in SQL is chronological order
    return as_utc(moment).isoformat(timespec="microseconds")


class SQLiteHistoryStore(HistoryStore):
    """
    Prediction history persisted to a SQLite database.

    Each append is a single transaction, so a crash never leaves a partially
    written prediction. ``":memory:"`` gives a throwaway database.
    """

    def __init__(self, db_path: str, **kwargs: Any):
        super().__init__(**kwargs)
        self.db_path = db_path
        if db_path != ":memory:":
            directory = os.path.dirname(db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        with self._conn:
            self._conn.executescript(_SCHEMA)
        logger.info(f"Prediction history database ready at {db_path}")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __len__(self) -> int:
        with self._lock:
            (count,) = self._conn.execute("SELECT COUNT(*) FROM predictions").fetchone()
        return int(count)

    @staticmethod
    def _row_to_prediction(row) -> Prediction:
        (prediction_id, timestamp, model_id, model_name, class_label,
         probability, confidence_band, input_snapshot) = row
        return Prediction(
            model_id=model_id,
            class_label=ClassLabel(class_label),
            probability=float(probability),
            confidence_band=ConfidenceBand(confidence_band),
            input_snapshot=json.loads(input_snapshot) if input_snapshot else {},
            prediction_id=prediction_id,
            timestamp=datetime.fromisoformat(timestamp),
            model_name=model_name,
        )

    def _next_sequence(self) -> int:
        (current,) = self._conn.execute("SELECT COALESCE(MAX(seq), 0) FROM predictions").fetchone()
        return int(current) + 1

    def _write(self, prediction: Prediction, sequence: int) -> None:
        with self._conn:
            self._conn.execute(
                f"INSERT INTO predictions (seq, {_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    sequence,
                    prediction.prediction_id,
                    _timestamp_text(prediction.timestamp),
                    prediction.model_id,
                    prediction.model_name,
                    prediction.class_label.value,
                    float(prediction.probability),
                    prediction.confidence_band.value,
                    json.dumps(dict(prediction.input_snapshot), default=str),
                ),
            )

    def _all(self) -> List[Prediction]:
        with self._lock:
            rows = self._conn.execute(f"SELECT {_COLUMNS} FROM predictions ORDER BY seq").fetchall()
        return [self._row_to_prediction(row) for row in rows]

    def _select(self, filters: HistoryFilters, offset: int, limit: int) -> Tuple[List[Prediction], int]:
        clauses: List[str] = []
        params: List[Any] = []
        if filters.class_label is not None:
            clauses.append("class_label = ?")
            params.append(filters.class_label.value)
        if filters.model_id is not None:
            clauses.append("model_id = ?")
            params.append(filters.model_id)
        if filters.confidence_band is not None:
            clauses.append("confidence_band = ?")
            params.append(filters.confidence_band.value)
        if filters.since is not None:
            clauses.append("timestamp >= ?")
            params.append(_timestamp_text(filters.since))
        if filters.until is not None:
            clauses.append("timestamp <= ?")
            params.append(_timestamp_text(filters.until))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._lock:
            (total,) = self._conn.execute(f"SELECT COUNT(*) FROM predictions{where}", params).fetchone()
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM predictions{where} "
                "ORDER BY timestamp DESC, prediction_id DESC LIMIT ? OFFSET ?",
                params + [limit, offset],
            ).fetchall()
        return [self._row_to_prediction(row) for row in rows], int(total)

    def _ground_truth(self) -> Dict[str, ClassLabel]:
        with self._lock:
            rows = self._conn.execute("SELECT prediction_id, class_label FROM ground_truth").fetchall()
        return {prediction_id: ClassLabel(label) for prediction_id, label in rows}

    def _write_ground_truth(self, prediction_id: str, label: ClassLabel) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO ground_truth (prediction_id, class_label, recorded_at) "
                "VALUES (?, ?, ?)",
                (prediction_id, label.value, self._clock().isoformat()),
            )

    def get(self, prediction_id: str) -> Prediction:
        with self._lock:
            row: Optional[tuple] = self._conn.execute(
                f"SELECT {_COLUMNS} FROM predictions WHERE prediction_id = ?",
                (prediction_id,),
            ).fetchone()
        if row is None:
            raise UnknownPredictionError(f"Unknown prediction '{prediction_id}'",
                                         detail={"prediction_id": prediction_id})
        return self._row_to_prediction(row)
