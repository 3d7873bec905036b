"""Extension data sources used by the test-suite.

They live in an importable module so that spawned worker processes can load
them by reference.
"""
from __future__ import annotations

import json
import time
from pathlib import Path

from pyds_bridge.datasource import (
    Capability,
    CapabilitySet,
    DataSource,
    DataSourceReader,
    DataSourceWriter,
    InputPartition,
    TaskContext,
    WriterCommitMessage,
)
from pyds_bridge.types import IntegerType, StructField, StructType


class TwoPartitionReader(DataSourceReader):
    def partitions(self):
        return [InputPartition(i) for i in range(2)]

    def read(self, partition):
        yield (0, partition.value)
        yield (1, partition.value)
        yield (2, partition.value)


class SimpleDataSource(DataSource):
    """Relies on the caller for its schema."""

    def reader(self, schema):
        return TwoPartitionReader()


class StringSchemaDataSource(DataSource):
    def schema(self):
        return "id INT, partition INT"

    def reader(self, schema):
        return TwoPartitionReader()


class StructSchemaDataSource(DataSource):
    def schema(self):
        return StructType(
            [
                StructField("id", IntegerType()),
                StructField("partition", IntegerType()),
            ]
        )

    def reader(self, schema):
        return TwoPartitionReader()


class IntSchemaDataSource(DataSource):
    def schema(self):
        return "INT"

    def reader(self, schema):
        return TwoPartitionReader()


class SingleValueReader(DataSourceReader):
    def read(self, partition):
        yield (0,)


class ReplacementDataSource(DataSource):
    def schema(self):
        return "id INT"

    def reader(self, schema):
        return SingleValueReader()


class EmptyDataSource(DataSource):
    pass


class FailingReaderDataSource(DataSource):
    def reader(self, schema):
        raise Exception("error creating reader")


class NotADataSource:
    def __init__(self, options):
        self.options = options


class RangePartition(InputPartition):
    def __init__(self, start, end):
        self.start = start
        self.end = end


class RangeReader(DataSourceReader):
    def partitions(self):
        return [RangePartition(1, 2), RangePartition(3, 4)]

    def read(self, partition):
        for i in range(partition.start, partition.end):
            yield (i,)


class RangeDataSource(DataSource):
    def schema(self):
        return "id INT"

    def reader(self, schema):
        return RangeReader()


class StatusReader(DataSourceReader):
    def partitions(self):
        return []

    def read(self, partition):
        if partition is None:
            yield ("success",)
        else:
            yield ("failed",)


class StatusDataSource(DataSource):
    def schema(self):
        return "status STRING"

    def reader(self, schema):
        return StatusReader()


class InvalidPartitionsReader(DataSourceReader):
    def __init__(self, kind):
        self.kind = kind

    def partitions(self):
        if self.kind == "int":
            return 1
        if self.kind == "list":
            return [1, 2]
        raise Exception("error")

    def read(self, partition):
        yield (0,)


class InvalidPartitionsDataSource(DataSource):
    def schema(self):
        return "id INT"

    def reader(self, schema):
        return InvalidPartitionsReader(self.options.get("kind", "raise"))


class PathsReader(DataSourceReader):
    def __init__(self, options):
        self.options = options

    def partitions(self):
        if "paths" in self.options:
            paths = json.loads(self.options["paths"])
        elif "path" in self.options:
            paths = [self.options["path"]]
        else:
            paths = []
        return [InputPartition(p) for p in paths]

    def read(self, partition):
        if partition is not None:
            yield (partition.value, 1)
        else:
            yield (partition, 1)


class PathsDataSource(DataSource):
    @classmethod
    def name(cls):
        return "test"

    def schema(self):
        return "id STRING, value INT"

    def reader(self, schema):
        return PathsReader(self.options)


class WideRowReader(DataSourceReader):
    def read(self, partition):
        yield (1, 2)
        yield (1, 2, 3)


class WideRowDataSource(DataSource):
    def schema(self):
        return "a INT, b INT"

    def reader(self, schema):
        return WideRowReader()


class ExplodingReader(DataSourceReader):
    def read(self, partition):
        yield (1,)
        raise ValueError("reader exploded")


class ExplodingDataSource(DataSource):
    def schema(self):
        return "id INT"

    def reader(self, schema):
        return ExplodingReader()


class TaskContextReader(DataSourceReader):
    def partitions(self):
        return [InputPartition(i) for i in range(3)]

    def read(self, partition):
        yield (TaskContext.get().partition_id, partition.value)


class TaskContextDataSource(DataSource):
    def schema(self):
        return "task INT, value INT"

    def reader(self, schema):
        return TaskContextReader()


class JsonCommitMessage(WriterCommitMessage):
    def __init__(self, partition_id, count):
        self.partition_id = partition_id
        self.count = count


class JsonLinesWriter(DataSourceWriter):
    """Writes one ``<partition>.json`` file per task and a marker on commit."""

    def __init__(self, options, overwrite):
        self.options = options
        self.overwrite = overwrite

    def write(self, iterator):
        partition_id = TaskContext.get().partition_id
        path = self.options.get("path")
        assert path is not None
        count = 0
        with open(f"{path}/{partition_id}.json", "w", encoding="utf-8") as fp:
            for row in iterator:
                fp.write(json.dumps(row.as_dict()) + "\n")
                count += 1
        return JsonCommitMessage(partition_id, count)

    def commit(self, messages):
        summary = {
            "partitions": [m.partition_id for m in messages],
            "rows": sum(m.count for m in messages),
            "overwrite": self.overwrite,
        }
        Path(self.options["path"], "_SUCCESS").write_text(json.dumps(summary), encoding="utf-8")


class JsonLinesDataSource(DataSource):
    def writer(self, schema, overwrite):
        return JsonLinesWriter(self.options, overwrite)


class FailingWriter(DataSourceWriter):
    def __init__(self, options):
        self.options = options

    def write(self, iterator):
        num_rows = 0
        for _ in iterator:
            num_rows += 1
            if num_rows > 2:
                raise Exception("something is wrong")

    def abort(self, messages):
        path = self.options.get("path")
        if path:
            Path(path, "_ABORTED").write_text(str(len(messages)), encoding="utf-8")


class FailingWriterDataSource(DataSource):
    def writer(self, schema, overwrite):
        return FailingWriter(self.options)


class WrongMessageWriter(DataSourceWriter):
    def write(self, iterator):
        for _ in iterator:
            pass
        return "done"


class WrongMessageDataSource(DataSource):
    def writer(self, schema, overwrite):
        return WrongMessageWriter()


class FailingCommitWriter(DataSourceWriter):
    def write(self, iterator):
        for _ in iterator:
            pass
        return WriterCommitMessage()

    def commit(self, messages):
        raise RuntimeError("commit refused")


class FailingCommitDataSource(DataSource):
    def writer(self, schema, overwrite):
        return FailingCommitWriter()


class ReadWriteDataSource(DataSource):
    def schema(self):
        return "id INT"

    def reader(self, schema):
        return SingleValueReader()

    def writer(self, schema, overwrite):
        return JsonLinesWriter(self.options, overwrite)


class ReaderOnlyDeclaredDataSource(ReadWriteDataSource):
    """Implements both, but only declares reading."""

    def capabilities(self):
        return CapabilitySet(frozenset({Capability.READER}))


class WrongReaderTypeDataSource(DataSource):
    def schema(self):
        return "id INT"

    def reader(self, schema):
        return object()


class SlowSchemaDataSource(DataSource):
    def schema(self):
        time.sleep(30)
        return "id INT"

    def reader(self, schema):
        return SingleValueReader()


def _refuse_restore():
    raise RuntimeError("value cannot be restored in the driver")


class UnrestorableValue:
    """Pickles fine in the worker but fails to unpickle on the other side."""

    def __reduce__(self):
        return (_refuse_restore, ())


class UnrestorableRowReader(DataSourceReader):
    def read(self, partition):
        yield (1, UnrestorableValue())


class UnrestorableRowDataSource(DataSource):
    def schema(self):
        return "id INT, value STRING"

    def reader(self, schema):
        return UnrestorableRowReader()


def _wait_for(path, timeout=15.0):
    deadline = time.monotonic() + timeout
    while not path.exists():
        if time.monotonic() > deadline:
            raise TimeoutError(f"{path} never appeared")
        time.sleep(0.05)


class SiblingFailureWriter(JsonLinesWriter):
    """Partition 1 fails once partition 0 has returned its commit message."""

    def write(self, iterator):
        partition_id = TaskContext.get().partition_id
        path = Path(self.options["path"])
        if partition_id == 1:
            for _ in iterator:
                pass
            _wait_for(path / "0.done")
            time.sleep(1.5)
            raise RuntimeError("partition 1 failed")
        message = super().write(iterator)
        (path / f"{partition_id}.done").touch()
        return message

    def abort(self, messages):
        ids = sorted(m.partition_id for m in messages)
        Path(self.options["path"], "_ABORTED").write_text(json.dumps(ids), encoding="utf-8")


class SiblingFailureDataSource(DataSource):
    def writer(self, schema, overwrite):
        return SiblingFailureWriter(self.options, overwrite)


class RaisingConstructorDataSource(DataSource):
    def __init__(self, options):
        raise ValueError("bad options")

    def schema(self):
        return "id INT"
