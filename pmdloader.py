# -*- coding: utf-8 -*-
"""
pmdloader.py - Builds a Model from the records emitted by PmdParser.

Each builder owns one cluster of model collections and only consumes parser
records; none of them reads the stream. Indices found in the file are turned
into object references here.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Sequence, TypeVar

from pmdstream import FileReadStream, InvalidFileError, MAX_BONE
from pmdparser import (
    PmdParser, ParseStage,
    HeaderRecord, EngHeaderRecord, VertexRecord, SurfaceRecord, MaterialRecord,
    BoneRecord, IKRecord, BoneGroupRecord, GroupedBoneRecord, EngNameRecord,
    MorphRecord, MorphOrderRecord, ToonRecord, RigidRecord, JointRecord,
)
from pmdmodel import (
    Model, Vertex, Surface, Material, ShadeInfo, Color, Pos2d, Pos3d, Vec3d, Rad3d, Deg3d,
    BoneInfo, BoneType, IKChain, MorphPart, MorphType, MorphVertex,
    RigidInfo, RigidShapeType, RigidBehaviorType, JointInfo,
)

T = TypeVar('T')

NO_BONE = 0xffff


class ModelBuilder:
    """Base class of the builders. Subclasses register their handlers in register()."""

    def __init__(self, model: Model):
        self.model = model

    def register(self, parser: PmdParser) -> None:
        raise NotImplementedError

    @staticmethod
    def lookup(items: Sequence[T], idx: int, what: str) -> T:
        if not 0 <= idx < len(items):
            raise InvalidFileError(f'{what} index out of range: {idx} (count {len(items)})')
        return items[idx]

    @staticmethod
    def decode(enum_cls, code: int):
        try:
            return enum_cls.decode(code)
        except ValueError as e:
            raise InvalidFileError(str(e)) from None


##################################################################################
class HeaderBuilder(ModelBuilder):
    def register(self, parser: PmdParser) -> None:
        parser.set_handler(ParseStage.HEADER, self.on_header)
        parser.set_handler(ParseStage.ENG_HEADER, self.on_eng_header)

    def on_header(self, stage: ParseStage, count: int, records: Iterator[HeaderRecord]) -> None:
        for rec in records:
            self.model.header_version = rec.version
            self.model.name.primary = rec.name
            self.model.description.primary = rec.description
        logging.debug(f"Loaded header: {self.model.name.primary} (version {self.model.header_version})")

    def on_eng_header(self, stage: ParseStage, count: int, records: Iterator[EngHeaderRecord]) -> None:
        for rec in records:
            if not rec.has_names:
                continue
            self.model.name.global_text = rec.name
            self.model.description.global_text = rec.description


class ShapeBuilder(ModelBuilder):
    """
    Vertices and surfaces.
    Vertices may name bones beyond the bone list of legacy files; the bone
    list is extended with default bones up to the highest such index.
    """

    def register(self, parser: PmdParser) -> None:
        parser.set_handler(ParseStage.VERTEX_LIST, self.on_vertices)
        parser.set_handler(ParseStage.SURFACE_LIST, self.on_surfaces)

    def prepare_bones(self, count: int) -> None:
        bones = self.model.bones
        if len(bones) < count:
            bones.extend(BoneInfo() for _ in range(count - len(bones)))

    def on_vertices(self, stage: ParseStage, count: int, records: Iterator[VertexRecord]) -> None:
        vertices: List[Vertex] = []
        for rec in records:
            vertex = Vertex(Pos3d(*rec.position), Vec3d(*rec.normal), Pos2d(*rec.uv))
            try:
                vertex.weight_a = rec.weight_a
            except ValueError as e:
                raise InvalidFileError(str(e)) from None
            vertex.edge_appearance = not rec.hide_edge

            self.prepare_bones(max(rec.bone_a, rec.bone_b) + 1)
            bones = self.model.bones
            vertex.set_bone_pair(bones[rec.bone_a], bones[rec.bone_b])
            vertices.append(vertex)

        self.model.vertices.extend(vertices)
        logging.debug(f"Loaded {len(self.model.vertices)} vertices")

    def on_surfaces(self, stage: ParseStage, count: int, records: Iterator[SurfaceRecord]) -> None:
        vertices = self.model.vertices
        surfaces: List[Surface] = []
        for rec in records:
            v1, v2, v3 = (self.lookup(vertices, vid, 'vertex') for vid in rec.vertices)
            try:
                surfaces.append(Surface(v1, v2, v3))
            except ValueError as e:
                raise InvalidFileError(f'{e}: {rec.vertices}') from None

        self.model.surfaces.extend(surfaces)
        logging.debug(f"Loaded {len(self.model.surfaces)} surfaces")


class MaterialBuilder(ModelBuilder):
    """Materials take consecutive slices of the surface list."""

    def __init__(self, model: Model):
        ModelBuilder.__init__(self, model)
        self._surface_cursor = 0

    def register(self, parser: PmdParser) -> None:
        parser.set_handler(ParseStage.MATERIAL_LIST, self.on_materials)

    def on_materials(self, stage: ParseStage, count: int, records: Iterator[MaterialRecord]) -> None:
        surfaces = self.model.surfaces
        for rec in records:
            material = Material()
            material.diffuse = Color(*rec.diffuse)
            material.shininess = rec.shininess
            material.specular = Color(*rec.specular)
            material.ambient = Color(*rec.ambient)
            material.edge_appearance = rec.edge

            shade = material.shade_info
            shade.toon_index = rec.toon_index
            texture, sphere = ShadeInfo.split_shading_file(rec.shading_file)
            shade.texture_file = texture or None
            shade.spheremap_file = sphere or None

            if rec.surface_vertex_count % 3 != 0 or rec.surface_vertex_count < 0:
                raise InvalidFileError(f'material surface vertex count {rec.surface_vertex_count} is not a multiple of 3')
            end = self._surface_cursor + rec.surface_vertex_count // 3
            if end > len(surfaces):
                raise InvalidFileError(f'material surfaces exceed surface list ({end} > {len(surfaces)})')
            material.surfaces = surfaces[self._surface_cursor:end]
            self._surface_cursor = end

            self.model.add_material(material)

        if self._surface_cursor != len(surfaces):
            raise InvalidFileError(f'materials cover {self._surface_cursor} of {len(surfaces)} surfaces')
        logging.debug(f"Loaded {len(self.model.materials)} materials")


class BoneBuilder(ModelBuilder):
    """Bones, IK chains, bone groups and their membership."""

    def __init__(self, model: Model):
        ModelBuilder.__init__(self, model)
        self.bone_count = 0

    def register(self, parser: PmdParser) -> None:
        parser.set_handler(ParseStage.BONE_LIST, self.on_bones)
        parser.set_handler(ParseStage.IK_LIST, self.on_ik_chains)
        parser.set_handler(ParseStage.BONEGROUP_LIST, self.on_bone_groups)
        parser.set_handler(ParseStage.GROUPEDBONE_LIST, self.on_grouped_bones)
        parser.set_handler(ParseStage.ENGBONE_LIST, self.on_eng_bones)
        parser.set_handler(ParseStage.ENGBONEGROUP_LIST, self.on_eng_bone_groups)

    def bone(self, idx: int) -> BoneInfo:
        return self.lookup(self.model.bones, idx, 'bone')

    def on_bones(self, stage: ParseStage, count: int, records: Iterator[BoneRecord]) -> None:
        bones = self.model.bones
        placeholders = len(bones)
        # allocate first so links may point forward
        if len(bones) < count:
            bones.extend(BoneInfo() for _ in range(count - len(bones)))
        self.bone_count = count

        for idx, rec in enumerate(records):
            bone = bones[idx]
            bone.name.primary = rec.name
            bone.bone_type = self.decode(BoneType, rec.bone_type)
            bone.position = Pos3d(*rec.position)

            if 0 <= rec.prev_id < MAX_BONE:
                bone.prev_bone = self.bone(rec.prev_id)
            if rec.next_id != 0:
                bone.next_bone = self.bone(rec.next_id)

            if bone.bone_type is BoneType.LINKEDROT:
                bone.rotation_ratio = rec.ik_id
            elif 0 < rec.ik_id < MAX_BONE:
                bone.ik_bone = self.bone(rec.ik_id)

        if placeholders > count:
            logging.warning(f"Vertices refer to {placeholders - count} bones beyond the bone list; default bones added")
        logging.debug(f"Loaded {len(bones)} bones")

    def on_ik_chains(self, stage: ParseStage, count: int, records: Iterator[IKRecord]) -> None:
        for rec in records:
            chain = IKChain(self.bone(rec.bone_id), rec.depth, rec.weight)
            chain.chained_bones.append(self.bone(rec.target_id))
            chain.chained_bones.extend(self.bone(bid) for bid in rec.chain)
            self.model.ik_chains.append(chain)
        logging.debug(f"Loaded {len(self.model.ik_chains)} IK chains")

    def on_bone_groups(self, stage: ParseStage, count: int, records: Iterator[BoneGroupRecord]) -> None:
        for rec in records:
            self.model.add_bone_group(rec.name)
        logging.debug(f"Loaded {len(self.model.bone_groups) - 1} bone groups")

    def on_grouped_bones(self, stage: ParseStage, count: int, records: Iterator[GroupedBoneRecord]) -> None:
        groups = self.model.bone_groups
        for rec in records:
            bone = self.bone(rec.bone_id)
            if rec.group_id == 0:
                # the default group holds every ungrouped bone already
                continue
            group = self.lookup(groups, rec.group_id, 'bone group')
            group.bones.append(bone)
        logging.debug(f"Loaded {count} grouped bones, {len(self.model.default_group_bones())} in default group")

    def on_eng_bones(self, stage: ParseStage, count: int, records: Iterator[EngNameRecord]) -> None:
        for idx, rec in enumerate(records):
            self.bone(idx).name.global_text = rec.name

    def on_eng_bone_groups(self, stage: ParseStage, count: int, records: Iterator[EngNameRecord]) -> None:
        groups = self.model.bone_groups
        for idx, rec in enumerate(records):
            self.lookup(groups, idx + 1, 'bone group').name.global_text = rec.name


class MorphBuilder(ModelBuilder):
    """
    The first morph in the file is the base morph. Its vertex ids are model
    vertex indices and define the merged morph-vertex space; the vertex ids of
    all other morphs index into that space.
    """

    def __init__(self, model: Model):
        ModelBuilder.__init__(self, model)
        self._parts: List[MorphPart] = []
        self._ordered = set()

    def register(self, parser: PmdParser) -> None:
        parser.set_handler(ParseStage.MORPH_LIST, self.on_morphs)
        parser.set_handler(ParseStage.MORPHORDER_LIST, self.on_morph_order)
        parser.set_handler(ParseStage.ENGMORPH_LIST, self.on_eng_morphs)

    def on_morphs(self, stage: ParseStage, count: int, records: Iterator[MorphRecord]) -> None:
        vertices = self.model.vertices
        merged: List[Vertex] = []

        for idx, rec in enumerate(records):
            morph_type = self.decode(MorphType, rec.morph_type)
            if (idx == 0) != morph_type.is_base():
                raise InvalidFileError(f'base morph must come first and only once: {rec.name!r} at {idx}')

            part = MorphPart(rec.name, morph_type)
            part.serial_number = idx
            if morph_type.is_base():
                for mv in rec.vertices:
                    vertex = self.lookup(vertices, mv.vertex_id, 'vertex')
                    morph_vertex = MorphVertex(vertex, Pos3d(*mv.position))
                    morph_vertex.serial_number = len(merged)
                    merged.append(vertex)
                    part.morph_vertices.append(morph_vertex)
            else:
                for mv in rec.vertices:
                    vertex = self.lookup(merged, mv.vertex_id, 'morph vertex')
                    morph_vertex = MorphVertex(vertex, Pos3d(*mv.position))
                    morph_vertex.serial_number = mv.vertex_id
                    part.morph_vertices.append(morph_vertex)
            self._parts.append(part)

        logging.debug(f"Loaded {len(self._parts)} morphs, {len(merged)} morph vertices")

    def on_morph_order(self, stage: ParseStage, count: int, records: Iterator[MorphOrderRecord]) -> None:
        for rec in records:
            if rec.morph_id == 0:
                raise InvalidFileError('the base morph cannot be ordered')
            part = self.lookup(self._parts, rec.morph_id, 'morph')
            if rec.morph_id in self._ordered:
                logging.debug(f"Morph {part.name.primary} ordered twice")
                continue
            self._ordered.add(rec.morph_id)
            self.model.add_morph(part)

    def on_eng_morphs(self, stage: ParseStage, count: int, records: Iterator[EngNameRecord]) -> None:
        for idx, rec in enumerate(records):
            self.lookup(self._parts, idx + 1, 'morph').name.global_text = rec.name

    def finish(self) -> None:
        """Morphs missing from the display order go to the tail of their type list."""
        for idx, part in enumerate(self._parts[1:], start=1):
            if idx in self._ordered:
                continue
            logging.warning(f"Morph {part.name.primary} is not in the display order")
            self.model.add_morph(part)


class ToonBuilder(ModelBuilder):
    def register(self, parser: PmdParser) -> None:
        parser.set_handler(ParseStage.TOON_LIST, self.on_toons)

    def on_toons(self, stage: ParseStage, count: int, records: Iterator[ToonRecord]) -> None:
        toon_map = self.model.toon_map
        for idx, rec in enumerate(records):
            toon_map.set_indexed_toon(idx, rec.filename)
        logging.debug(f"Loaded {count} toon textures")


class RigidBuilder(ModelBuilder):
    def register(self, parser: PmdParser) -> None:
        parser.set_handler(ParseStage.RIGID_LIST, self.on_rigids)

    def on_rigids(self, stage: ParseStage, count: int, records: Iterator[RigidRecord]) -> None:
        groups = self.model.rigid_groups
        for rec in records:
            rigid = RigidInfo(rec.name)
            if rec.bone_id != NO_BONE:
                rigid.linked_bone = self.lookup(self.model.bones, rec.bone_id, 'bone')
            rigid.set_rigid_group(self.lookup(groups, rec.group_id, 'rigid group'))
            for group in groups:
                if not rec.collision_mask & (1 << group.serial_number):
                    rigid.through_groups.append(group)

            shape = rigid.shape
            shape.shape_type = self.decode(RigidShapeType, rec.shape_type)
            shape.width = rec.width
            shape.height = rec.height
            shape.depth = rec.depth

            rigid.position = Pos3d(*rec.position)
            rigid.rotation = Rad3d(*rec.rotation)

            dynamics = rigid.dynamics
            dynamics.mass = rec.mass
            dynamics.damping_position = rec.damping_position
            dynamics.damping_rotation = rec.damping_rotation
            dynamics.restitution = rec.restitution
            dynamics.friction = rec.friction

            rigid.behavior_type = self.decode(RigidBehaviorType, rec.behavior_type)
            self.model.rigids.append(rigid)

        logging.debug(f"Loaded {len(self.model.rigids)} rigid bodies")


class JointBuilder(ModelBuilder):
    def register(self, parser: PmdParser) -> None:
        parser.set_handler(ParseStage.JOINT_LIST, self.on_joints)

    def on_joints(self, stage: ParseStage, count: int, records: Iterator[JointRecord]) -> None:
        rigids = self.model.rigids
        for rec in records:
            joint = JointInfo(rec.name)
            joint.set_rigid_pair(self.lookup(rigids, rec.rigid_a, 'rigid'),
                                 self.lookup(rigids, rec.rigid_b, 'rigid'))
            joint.position = Pos3d(*rec.position)
            joint.rotation = Rad3d(*rec.rotation)

            for limits, lo, hi in ((joint.position_range, rec.position_from, rec.position_to),
                                   (joint.rotation_range, rec.rotation_from, rec.rotation_to)):
                limits.set_x_range(lo[0], hi[0])
                limits.set_y_range(lo[1], hi[1])
                limits.set_z_range(lo[2], hi[2])

            joint.elastic_position = Pos3d(*rec.elastic_position)
            joint.elastic_rotation = Deg3d(*rec.elastic_rotation)
            self.model.joints.append(joint)

        logging.debug(f"Loaded {len(self.model.joints)} joints")


##################################################################################
class PmdLoader:
    """Loads one model from one stream. A loader can be used only once."""

    def __init__(self, stream: FileReadStream):
        self._stream = stream
        self._parser = PmdParser(stream)
        self._model = Model()
        self._loaded = False
        self.has_more_data = False

        self.morph_builder = MorphBuilder(self._model)
        self.builders: Dict[str, ModelBuilder] = {
            'header': HeaderBuilder(self._model),
            'shape': ShapeBuilder(self._model),
            'material': MaterialBuilder(self._model),
            'bone': BoneBuilder(self._model),
            'morph': self.morph_builder,
            'toon': ToonBuilder(self._model),
            'rigid': RigidBuilder(self._model),
            'joint': JointBuilder(self._model),
        }
        for builder in self.builders.values():
            builder.register(self._parser)

    @property
    def has_english_info(self) -> bool:
        return self._parser.has_english_info

    def load(self) -> Model:
        if self._loaded:
            raise ValueError('PmdLoader can load only once.')
        self._loaded = True

        try:
            self._parser.parse()
        except InvalidFileError as e:
            if e.offset is None:
                raise InvalidFileError(e.message, self._stream.position) from e
            raise

        self.morph_builder.finish()
        self.has_more_data = self._parser.has_more_data
        logging.debug(f"Loaded model: {self._model}")
        return self._model
