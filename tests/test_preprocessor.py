"""Tests for record preprocessing."""

import math

import numpy as np
import pytest

from adherence_xai.data.preprocessor import (
    UNKNOWN_CATEGORY_CODE,
    FeatureVector,
    RecordPreprocessor,
    preprocess,
)
from adherence_xai.data.schema import FeatureKind, FeatureSchema, FeatureSpec
from adherence_xai.exceptions import PreprocessingError


def test_every_declared_feature_in_schema_order(schema: FeatureSchema, sample_record) -> None:
    sample_record["MASK_ID"] = 99
    vector = preprocess(sample_record, schema)

    assert list(vector.names) == schema.names
    assert len(vector) == len(schema)
    assert "MASK_ID" not in vector.names


def test_categorical_values_encode_to_declared_position(schema: FeatureSchema, sample_record) -> None:
    vector = preprocess(sample_record, schema)
    values = dict(zip(vector.names, vector.values))

    # Histologic_grade declares [1, 2, 3, 4]; 3 sits at position 2
    assert values["Histologic_grade"] == 2.0
    # agecat declares [1, 2, 3]
    assert values["agecat"] == 0.0
    # numeric features pass through
    assert values["T_stage"] == 2.0
    assert values["num_lymph_node_examined"] == 7.0


def test_numeric_strings_are_coerced(schema: FeatureSchema, sample_record) -> None:
    sample_record["T_stage"] = "3"
    sample_record["agecat"] = "2"
    vector = preprocess(sample_record, schema)
    values = dict(zip(vector.names, vector.values))
    assert values["T_stage"] == 3.0
    assert values["agecat"] == 1.0


def test_missing_optional_categorical_is_imputed(schema: FeatureSchema, sample_record) -> None:
    vector = preprocess(sample_record, schema)
    assert vector.to_dict()["PD_location"] == UNKNOWN_CATEGORY_CODE


def test_missing_optional_numeric_uses_declared_default() -> None:
    schema = FeatureSchema([
        FeatureSpec(name="nodes", kind=FeatureKind.NUMERIC, required=False, default=4),
        FeatureSpec(name="grade", kind=FeatureKind.NUMERIC, required=False),
    ])
    vector = RecordPreprocessor(schema).transform({})
    assert vector.values.tolist() == [4.0, 0.0]


def test_sentinel_strategy_marks_missing_values(schema: FeatureSchema, sample_record) -> None:
    preprocessor = RecordPreprocessor(schema, missing_strategy="sentinel")
    vector = preprocessor.transform(sample_record)
    position = schema.names.index("PD_location")
    assert math.isnan(vector.values[position])
    assert vector.to_dict()["PD_location"] is None


def test_preprocessing_is_deterministic(schema: FeatureSchema, sample_record) -> None:
    assert preprocess(sample_record, schema) == preprocess(dict(sample_record), schema)


def test_vector_is_read_only(schema: FeatureSchema, sample_record) -> None:
    vector = preprocess(sample_record, schema)
    with pytest.raises(ValueError):
        vector.values[0] = 5.0


def test_missing_required_value_raises(schema: FeatureSchema, sample_record) -> None:
    del sample_record["agecat"]
    with pytest.raises(PreprocessingError):
        preprocess(sample_record, schema)


def test_uncoercible_value_raises(schema: FeatureSchema, sample_record) -> None:
    sample_record["T_stage"] = "two"
    with pytest.raises(PreprocessingError) as excinfo:
        preprocess(sample_record, schema)
    assert excinfo.value.kind == "preprocessing_error"
    assert excinfo.value.detail["field"] == "T_stage"


def test_unknown_strategy_rejected(schema: FeatureSchema) -> None:
    with pytest.raises(ValueError):
        RecordPreprocessor(schema, missing_strategy="drop")


def test_to_frame_keeps_column_order(schema: FeatureSchema, sample_record) -> None:
    preprocessor = RecordPreprocessor(schema)
    frame = preprocessor.to_frame(preprocessor.transform_many([sample_record, sample_record]))
    assert list(frame.columns) == schema.names
    assert frame.shape == (2, len(schema))


def test_feature_vector_length_must_match_names() -> None:
    with pytest.raises(ValueError):
        FeatureVector(names=("a", "b"), values=np.array([1.0]))
