import pytest

from bioscan.table_utils import (
    Attribute,
    DataType,
    ExecutionError,
    Field,
    ListType,
    OptionalField,
    RecordBatch,
    Schema,
    SchemaError,
    build_record_batch,
    builders_to_arrays,
    project_schema,
)


@pytest.fixture
def schema():
    return Schema(
        (
            Field("chrom", DataType.UTF8, False),
            Field("start", DataType.UINT32, False),
            Field("name", DataType.UTF8, True),
        )
    )


def test_int_builder_collects_values_and_nulls():
    builder = OptionalField(DataType.INT32, 4)
    builder.append_int(7)
    builder.append_null()
    builder.append_int(-3)
    assert builder.finish() == [7, None, -3]


def test_finish_resets_builder():
    builder = OptionalField(DataType.UTF8, 2)
    builder.append_string("a")
    assert builder.finish() == ["a"]
    assert builder.finish() == []


def test_list_builders():
    ints = OptionalField(ListType(DataType.INT32), 2)
    ints.append_array_int([1, 2])
    ints.append_null()
    floats = OptionalField(ListType(DataType.FLOAT32), 2)
    floats.append_array_float([0.5])
    strings = OptionalField(ListType(DataType.UTF8), 2)
    strings.append_array_string(("x", "y"))
    assert builders_to_arrays([ints, floats, strings]) == [[[1, 2], None], [[0.5]], [["x", "y"]]]


def test_scalar_float_and_boolean():
    flt = OptionalField(DataType.FLOAT32, 1)
    flt.append_float(1.5)
    flag = OptionalField(DataType.BOOLEAN, 1)
    flag.append_boolean(True)
    assert flt.finish() == [1.5]
    assert flag.finish() == [True]


def test_struct_list_builder():
    builder = OptionalField(ListType(DataType.STRUCT), 1)
    builder.append_array_struct([Attribute("ID", "gene1"), Attribute("flag")])
    assert builder.finish() == [[{"tag": "ID", "value": "gene1"}, {"tag": "flag", "value": None}]]


@pytest.mark.parametrize(
    ("data_type", "append"),
    [
        (DataType.UTF8, lambda b: b.append_int(1)),
        (DataType.INT32, lambda b: b.append_boolean(True)),
        (DataType.INT32, lambda b: b.append_float(1.0)),
        (DataType.INT32, lambda b: b.append_string("x")),
        (DataType.INT32, lambda b: b.append_array_int([1])),
        (DataType.INT32, lambda b: b.append_array_float([1.0])),
        (DataType.INT32, lambda b: b.append_array_string(["x"])),
        (DataType.INT32, lambda b: b.append_array_struct([])),
    ],
)
def test_wrong_append_raises(data_type, append):
    builder = OptionalField(data_type, 1)
    with pytest.raises(SchemaError):
        append(builder)
    assert builder.finish() == []


def test_unsupported_types_raise():
    with pytest.raises(SchemaError, match="Unsupported data type"):
        OptionalField(DataType.UINT32, 1)
    with pytest.raises(SchemaError, match="Unsupported list inner data type"):
        OptionalField(ListType(DataType.UINT32), 1)


def test_project_schema(schema):
    assert project_schema(schema, None) is schema
    assert project_schema(schema, [2, 0]).names == ["name", "chrom"]
    dummy = project_schema(schema, [])
    assert dummy.fields == (Field("dummy", DataType.NULL, True),)
    assert schema.project([1]).field(0) == schema.field(1)


def test_project_schema_out_of_range(schema):
    with pytest.raises(IndexError):
        project_schema(schema, [5])


def test_build_record_batch_full(schema):
    columns = [["chr1", "chr2"], [1, 5], [None, "b"]]
    batch = build_record_batch(schema, columns, None)
    assert batch.num_rows == 2
    assert batch.column("start") == [1, 5]
    assert batch.to_pylist()[1] == {"chrom": "chr2", "start": 5, "name": "b"}


def test_build_record_batch_projection(schema):
    columns = [["chr1"], [1], ["a"]]
    projected = schema.project([2, 0])
    batch = build_record_batch(projected, columns, [2, 0])
    assert batch.columns == [["a"], ["chr1"]]


def test_build_record_batch_empty_projection(schema):
    columns = [["chr1", "chr2", "chr3"], [1, 2, 3], [None, None, None]]
    batch = build_record_batch(schema.project([]), columns, [])
    assert batch.num_rows == 3
    assert batch.column("dummy") == [None, None, None]


def test_build_record_batch_rejects_nulls_in_required_column(schema):
    with pytest.raises(ExecutionError, match="Error creating batch"):
        build_record_batch(schema, [[None], [1], ["a"]], None)


def test_build_record_batch_rejects_column_count(schema):
    with pytest.raises(ExecutionError):
        build_record_batch(schema, [["chr1"], [1]], None)


def test_record_batch_rejects_uneven_columns(schema):
    with pytest.raises(ValueError):
        RecordBatch(schema, [["chr1"], [1, 2], ["a"]])


def test_record_batch_unknown_column(schema):
    batch = RecordBatch(schema, [[], [], []])
    assert batch.to_pylist() == []
    with pytest.raises(KeyError):
        batch.column("missing")