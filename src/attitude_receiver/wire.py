"""Protobuf schema of the attitude characteristic value.

One notification carries exactly one serialized ``Attitude`` message (see
``attitude.proto`` next to this module)::

    syntax = "proto3";

    message Attitude {
      double time = 1;  // seconds since the reference epoch
      float rx = 2;
      float ry = 3;
      float rz = 4;
    }

The message class is built at import time from a ``FileDescriptorProto`` so
no generated ``_pb2`` module has to be kept in sync with the ``.proto`` file.
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import Message

PROTO_PACKAGE = "attitude_receiver"
_FieldProto = descriptor_pb2.FieldDescriptorProto

# (name, number, type) in declaration order
ATTITUDE_FIELDS = (
    ("time", 1, _FieldProto.TYPE_DOUBLE),
    ("rx", 2, _FieldProto.TYPE_FLOAT),
    ("ry", 3, _FieldProto.TYPE_FLOAT),
    ("rz", 4, _FieldProto.TYPE_FLOAT),
)


def _build_attitude_class() -> type[Message]:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="attitude_receiver/attitude.proto",
        package=PROTO_PACKAGE,
        syntax="proto3",
    )
    message_proto = file_proto.message_type.add(name="Attitude")
    for name, number, field_type in ATTITUDE_FIELDS:
        message_proto.field.add(
            name=name,
            number=number,
            type=field_type,
            label=_FieldProto.LABEL_OPTIONAL,
            json_name=name,
        )

    # Private pool: never clashes with messages registered by other packages
    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    descriptor = pool.FindMessageTypeByName(f"{PROTO_PACKAGE}.Attitude")
    return message_factory.GetMessageClass(descriptor)


Attitude = _build_attitude_class()


def parse_attitude(payload: bytes) -> Message:
    """Parse a serialized ``Attitude`` message.

    Raises:
        google.protobuf.message.DecodeError: If ``payload`` is not a valid
            protobuf encoding.
    """
    message = Attitude()
    message.ParseFromString(payload)
    return message


def encode_attitude(time: float, rx: float, ry: float, rz: float) -> bytes:
    """Serialize one sample; used by peripherals and test fixtures."""
    return Attitude(time=time, rx=rx, ry=ry, rz=rz).SerializeToString()

