# -*- coding: utf-8 -*-
"""
pmdparser.py - Streaming PMD decoder.

The parser walks the file section by section. For every section a handler
registered with set_handler() is called once as

    handler(stage, count, records)

where records is a lazy iterator of typed records decoded straight from the
stream. Records the handler does not consume are read and discarded afterwards,
so the stream stays aligned. Sections without a handler are skipped by byte
span and never decoded.

The English, toon and physics sections are optional trailing data; each one
is parsed only if the stream still has bytes left.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Dict, Iterator, List, NamedTuple, Optional, Tuple

from pmdstream import (
    FileReadStream, InvalidFileError, LF, CRLF, chop_last_lf,
    MAXBYTES_MODELNAME, MAXBYTES_MODELDESC, MAXBYTES_BONENAME, MAXBYTES_MORPHNAME,
    MAXBYTES_BONEGROUPNAME, MAXBYTES_TEXTUREFILENAME, MAXBYTES_TOONFILENAME,
    MAXBYTES_RIGIDNAME, MAXBYTES_JOINTNAME, TOON_FIXEDNUM,
)

MAGIC = b'Pmd'

# Fixed record sizes in bytes
VERTEX_DATA_SZ = 38
SURFACE_DATA_SZ = 6
MATERIAL_DATA_SZ = 70
BONE_DATA_SZ = 39
MORPHVERTEX_DATA_SZ = 16
MORPHORDER_DATA_SZ = 2
GROUPEDBONE_DATA_SZ = 3
RIGID_DATA_SZ = 83
JOINT_DATA_SZ = 124


class ParseStage(Enum):
    HEADER = 'header'
    VERTEX_LIST = 'vertex'
    SURFACE_LIST = 'surface'
    MATERIAL_LIST = 'material'
    BONE_LIST = 'bone'
    IK_LIST = 'ik'
    MORPH_LIST = 'morph'
    MORPHORDER_LIST = 'morph order'
    BONEGROUP_LIST = 'bone group'
    GROUPEDBONE_LIST = 'grouped bone'
    ENG_HEADER = 'english header'
    ENGBONE_LIST = 'english bone name'
    ENGMORPH_LIST = 'english morph name'
    ENGBONEGROUP_LIST = 'english bone group name'
    TOON_LIST = 'toon'
    RIGID_LIST = 'rigid'
    JOINT_LIST = 'joint'


##################################################################################
# Records
class HeaderRecord(NamedTuple):
    version: float
    name: str
    description: str

class VertexRecord(NamedTuple):
    position: Tuple[float, float, float]
    normal: Tuple[float, float, float]
    uv: Tuple[float, float]
    bone_a: int
    bone_b: int
    weight_a: int
    hide_edge: bool

class SurfaceRecord(NamedTuple):
    vertices: Tuple[int, int, int]

class MaterialRecord(NamedTuple):
    diffuse: Tuple[float, float, float, float]
    shininess: float
    specular: Tuple[float, float, float]
    ambient: Tuple[float, float, float]
    toon_index: int
    edge: bool
    surface_vertex_count: int
    shading_file: str

class BoneRecord(NamedTuple):
    name: str
    prev_id: int
    next_id: int
    bone_type: int
    ik_id: int
    position: Tuple[float, float, float]

class IKRecord(NamedTuple):
    bone_id: int
    target_id: int
    depth: int
    weight: float
    chain: Tuple[int, ...]

class MorphVertexRecord(NamedTuple):
    vertex_id: int
    position: Tuple[float, float, float]

class MorphRecord(NamedTuple):
    name: str
    morph_type: int
    vertices: Tuple[MorphVertexRecord, ...]

class MorphOrderRecord(NamedTuple):
    morph_id: int

class BoneGroupRecord(NamedTuple):
    name: str

class GroupedBoneRecord(NamedTuple):
    bone_id: int
    group_id: int

class EngHeaderRecord(NamedTuple):
    has_names: bool
    name: Optional[str]
    description: Optional[str]

class EngNameRecord(NamedTuple):
    name: str

class ToonRecord(NamedTuple):
    filename: str

class RigidRecord(NamedTuple):
    name: str
    bone_id: int
    group_id: int
    collision_mask: int
    shape_type: int
    width: float
    height: float
    depth: float
    position: Tuple[float, float, float]
    rotation: Tuple[float, float, float]
    mass: float
    damping_position: float
    damping_rotation: float
    restitution: float
    friction: float
    behavior_type: int

class JointRecord(NamedTuple):
    name: str
    rigid_a: int
    rigid_b: int
    position: Tuple[float, float, float]
    rotation: Tuple[float, float, float]
    position_from: Tuple[float, float, float]
    position_to: Tuple[float, float, float]
    rotation_from: Tuple[float, float, float]
    rotation_to: Tuple[float, float, float]
    elastic_position: Tuple[float, float, float]
    elastic_rotation: Tuple[float, float, float]


Handler = Callable[[ParseStage, int, Iterator], None]


class RecordIterator:
    """Reads at most count records on demand."""

    def __init__(self, count: int, read_record: Callable[[], NamedTuple]):
        self.remaining = count
        self._read_record = read_record

    def __iter__(self):
        return self

    def __next__(self):
        if self.remaining <= 0:
            raise StopIteration
        self.remaining -= 1
        return self._read_record()

    def __len__(self):
        return self.remaining

    def drain(self) -> int:
        drained = 0
        while self.remaining > 0:
            next(self)
            drained += 1
        return drained


##################################################################################
class PmdParser:
    def __init__(self, stream: FileReadStream):
        if stream is None:
            raise ValueError('stream must not be None')
        self._stream = stream
        self._handlers: Dict[ParseStage, Handler] = {}
        self._parsed = False

        self.bone_count = 0
        self.morph_count = 0
        self.bone_group_count = 0
        self.has_english_info = False
        self.has_more_data = False

    def set_handler(self, stage: ParseStage, handler: Optional[Handler]) -> None:
        """Register (or with None, remove) the handler for one section."""
        if handler is None:
            self._handlers.pop(stage, None)
        else:
            self._handlers[stage] = handler

    def set_handlers(self, stages, handler: Handler) -> None:
        for stage in stages:
            self.set_handler(stage, handler)

    def has_handler(self, stage: ParseStage) -> bool:
        return stage in self._handlers

    ################################################################################
    # Pipeline
    def pipeline(self) -> List[Tuple[bool, Callable[[], None]]]:
        """(guarded, stage function) pairs. Guarded stages run only if data remains."""
        return [
            (False, self.parse_header),
            (False, self.parse_vertex_list),
            (False, self.parse_surface_list),
            (False, self.parse_material_list),
            (False, self.parse_bone_list),
            (False, self.parse_ik_list),
            (False, self.parse_morph_list),
            (False, self.parse_morph_order_list),
            (False, self.parse_bone_group_list),
            (False, self.parse_grouped_bone_list),
            (True, self.parse_english),
            (True, self.parse_toon_list),
            (True, self.parse_physics),
        ]

    def parse(self) -> None:
        if self._parsed:
            raise ValueError('PmdParser can parse only once.')
        self._parsed = True

        for guarded, stage_func in self.pipeline():
            if guarded and not self._stream.hasMore():
                logging.info(f"No more data before {stage_func.__name__}")
                break
            stage_func()

        self.has_more_data = self._stream.hasMore()
        if self.has_more_data:
            logging.info(f"Unparsed data remains after offset {self._stream.position}")

    ################################################################################
    def _run_section(self, stage: ParseStage, count: int, record_size: int,
                     read_record: Callable[[], NamedTuple],
                     skip_record: Optional[Callable[[], None]] = None) -> None:
        handler = self._handlers.get(stage)
        if handler is None:
            if skip_record is None:
                self._stream.skip(count * record_size)
            else:
                for _ in range(count):
                    skip_record()
            logging.debug(f"Skipped {count} {stage.value} records")
            return

        records = RecordIterator(count, read_record)
        handler(stage, count, records)
        drained = records.drain()
        if drained:
            logging.debug(f"Drained {drained} unused {stage.value} records")
        logging.debug(f"Parsed {count} {stage.value} records")

    def _read_count(self, value: int, what: str) -> int:
        if value < 0:
            raise InvalidFileError(f'negative {what} count: {value}', self._stream.position)
        return value

    def _read_vec3(self) -> Tuple[float, float, float]:
        return self._stream.readVector(3)

    ################################################################################
    # Base sections
    def parse_header(self) -> None:
        s = self._stream
        magic = s.readBytes(len(MAGIC))
        if magic != MAGIC:
            raise InvalidFileError('unrecognized magic data', 0)

        def read_record():
            version = s.readFloat()
            name = s.readStr(MAXBYTES_MODELNAME)
            description = s.readStr(MAXBYTES_MODELDESC).replace(CRLF, LF)
            return HeaderRecord(version, name, description)

        self._run_section(ParseStage.HEADER, 1, 4 + MAXBYTES_MODELNAME + MAXBYTES_MODELDESC, read_record)

    def parse_vertex_list(self) -> None:
        s = self._stream
        count = self._read_count(s.readInt(), 'vertex')

        def read_record():
            position = self._read_vec3()
            normal = self._read_vec3()
            uv = s.readVector(2)
            bone_a = s.readUnsignedShort()
            bone_b = s.readUnsignedShort()
            weight = s.readByte()
            hide_edge = s.readBool()
            return VertexRecord(position, normal, uv, bone_a, bone_b, weight, hide_edge)

        self._run_section(ParseStage.VERTEX_LIST, count, VERTEX_DATA_SZ, read_record)

    def parse_surface_list(self) -> None:
        s = self._stream
        vertex_count = self._read_count(s.readInt(), 'surface vertex')
        if vertex_count % 3 != 0:
            raise InvalidFileError(f'surface vertex count {vertex_count} is not a multiple of 3', s.position)

        def read_record():
            return SurfaceRecord((s.readUnsignedShort(), s.readUnsignedShort(), s.readUnsignedShort()))

        self._run_section(ParseStage.SURFACE_LIST, vertex_count // 3, SURFACE_DATA_SZ, read_record)

    def parse_material_list(self) -> None:
        s = self._stream
        count = self._read_count(s.readInt(), 'material')

        def read_record():
            diffuse = s.readVector(4)
            shininess = s.readFloat()
            specular = self._read_vec3()
            ambient = self._read_vec3()
            toon_index = s.readByte()
            edge = s.readBool()
            surface_vertex_count = s.readInt()
            shading_file = s.readStr(MAXBYTES_TEXTUREFILENAME)
            return MaterialRecord(diffuse, shininess, specular, ambient, toon_index, edge,
                                  surface_vertex_count, shading_file)

        self._run_section(ParseStage.MATERIAL_LIST, count, MATERIAL_DATA_SZ, read_record)

    def parse_bone_list(self) -> None:
        s = self._stream
        self.bone_count = s.readUnsignedShort()

        def read_record():
            name = s.readStr(MAXBYTES_BONENAME)
            prev_id = s.readUnsignedShort()
            next_id = s.readUnsignedShort()
            bone_type = s.readByte()
            ik_id = s.readUnsignedShort()
            position = self._read_vec3()
            return BoneRecord(name, prev_id, next_id, bone_type, ik_id, position)

        self._run_section(ParseStage.BONE_LIST, self.bone_count, BONE_DATA_SZ, read_record)

    def parse_ik_list(self) -> None:
        s = self._stream
        count = s.readUnsignedShort()

        def read_record():
            bone_id = s.readUnsignedShort()
            target_id = s.readUnsignedShort()
            chain_length = s.readByte()
            depth = s.readUnsignedShort()
            weight = s.readFloat()
            chain = tuple(s.readUnsignedShort() for _ in range(chain_length))
            return IKRecord(bone_id, target_id, depth, weight, chain)

        def skip_record():
            s.skip(4)
            chain_length = s.readByte()
            s.skip(2 + 4 + 2 * chain_length)

        self._run_section(ParseStage.IK_LIST, count, 0, read_record, skip_record)

    def parse_morph_list(self) -> None:
        s = self._stream
        self.morph_count = s.readUnsignedShort()

        def read_record():
            name = s.readStr(MAXBYTES_MORPHNAME)
            vertex_count = self._read_count(s.readInt(), 'morph vertex')
            morph_type = s.readByte()
            vertices = tuple(MorphVertexRecord(s.readInt(), self._read_vec3()) for _ in range(vertex_count))
            return MorphRecord(name, morph_type, vertices)

        def skip_record():
            s.skip(MAXBYTES_MORPHNAME)
            vertex_count = self._read_count(s.readInt(), 'morph vertex')
            s.skip(1 + MORPHVERTEX_DATA_SZ * vertex_count)

        self._run_section(ParseStage.MORPH_LIST, self.morph_count, 0, read_record, skip_record)

    def parse_morph_order_list(self) -> None:
        s = self._stream
        count = s.readByte()
        self._run_section(ParseStage.MORPHORDER_LIST, count, MORPHORDER_DATA_SZ,
                          lambda: MorphOrderRecord(s.readUnsignedShort()))

    def parse_bone_group_list(self) -> None:
        s = self._stream
        self.bone_group_count = s.readByte()
        self._run_section(ParseStage.BONEGROUP_LIST, self.bone_group_count, MAXBYTES_BONEGROUPNAME,
                          lambda: BoneGroupRecord(chop_last_lf(s.readStr(MAXBYTES_BONEGROUPNAME))))

    def parse_grouped_bone_list(self) -> None:
        s = self._stream
        count = self._read_count(s.readInt(), 'grouped bone')
        self._run_section(ParseStage.GROUPEDBONE_LIST, count, GROUPEDBONE_DATA_SZ,
                          lambda: GroupedBoneRecord(s.readUnsignedShort(), s.readByte()))

    ################################################################################
    # Optional trailing sections
    def parse_english(self) -> None:
        s = self._stream
        self.has_english_info = s.readBool()

        def read_header():
            if not self.has_english_info:
                return EngHeaderRecord(False, None, None)
            name = s.readStr(MAXBYTES_MODELNAME)
            description = s.readStr(MAXBYTES_MODELDESC).replace(CRLF, LF)
            return EngHeaderRecord(True, name, description)

        header_size = MAXBYTES_MODELNAME + MAXBYTES_MODELDESC if self.has_english_info else 0
        self._run_section(ParseStage.ENG_HEADER, 1, header_size, read_header)
        logging.info(f"English names {'present' if self.has_english_info else 'absent'}")
        if not self.has_english_info:
            return

        # the base morph has no English name
        morph_count = max(self.morph_count - 1, 0)
        self._run_section(ParseStage.ENGBONE_LIST, self.bone_count, MAXBYTES_BONENAME,
                          lambda: EngNameRecord(s.readStr(MAXBYTES_BONENAME)))
        self._run_section(ParseStage.ENGMORPH_LIST, morph_count, MAXBYTES_MORPHNAME,
                          lambda: EngNameRecord(s.readStr(MAXBYTES_MORPHNAME)))
        self._run_section(ParseStage.ENGBONEGROUP_LIST, self.bone_group_count, MAXBYTES_BONEGROUPNAME,
                          lambda: EngNameRecord(s.readStr(MAXBYTES_BONEGROUPNAME)))

    def parse_toon_list(self) -> None:
        s = self._stream
        self._run_section(ParseStage.TOON_LIST, TOON_FIXEDNUM, MAXBYTES_TOONFILENAME,
                          lambda: ToonRecord(s.readStr(MAXBYTES_TOONFILENAME)))

    def parse_physics(self) -> None:
        self.parse_rigid_list()
        self.parse_joint_list()

    def parse_rigid_list(self) -> None:
        s = self._stream
        count = self._read_count(s.readInt(), 'rigid')

        def read_record():
            name = s.readStr(MAXBYTES_RIGIDNAME)
            bone_id = s.readUnsignedShort()
            group_id = s.readByte()
            collision_mask = s.readUnsignedShort()
            shape_type = s.readByte()
            width, height, depth = self._read_vec3()
            position = self._read_vec3()
            rotation = self._read_vec3()
            mass = s.readFloat()
            damping_position = s.readFloat()
            damping_rotation = s.readFloat()
            restitution = s.readFloat()
            friction = s.readFloat()
            behavior_type = s.readByte()
            return RigidRecord(name, bone_id, group_id, collision_mask, shape_type,
                               width, height, depth, position, rotation,
                               mass, damping_position, damping_rotation, restitution, friction,
                               behavior_type)

        self._run_section(ParseStage.RIGID_LIST, count, RIGID_DATA_SZ, read_record)

    def parse_joint_list(self) -> None:
        s = self._stream
        count = self._read_count(s.readInt(), 'joint')

        def read_record():
            name = s.readStr(MAXBYTES_JOINTNAME)
            rigid_a = s.readInt()
            rigid_b = s.readInt()
            position = self._read_vec3()
            rotation = self._read_vec3()
            position_from = self._read_vec3()
            position_to = self._read_vec3()
            rotation_from = self._read_vec3()
            rotation_to = self._read_vec3()
            elastic_position = self._read_vec3()
            elastic_rotation = self._read_vec3()
            return JointRecord(name, rigid_a, rigid_b, position, rotation,
                               position_from, position_to, rotation_from, rotation_to,
                               elastic_position, elastic_rotation)

        self._run_section(ParseStage.JOINT_LIST, count, JOINT_DATA_SZ, read_record)
