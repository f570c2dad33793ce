# -*- coding: utf-8 -*-
"""
pmdexporter.py - Writes a Model as a PMD binary.

Entity references are written as the referenced entity's serial_number, which
must match its position in the owning model list. Run Model.trimming() first
on models whose surface or vertex lists were edited by hand.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from pmdstream import (
    FileWriteStream, ExportError, FILLER_FD, FILLER_NULL, FILLER_LF, MAX_BONE,
    MAXBYTES_MODELNAME, MAXBYTES_MODELDESC, MAXBYTES_BONENAME, MAXBYTES_MORPHNAME,
    MAXBYTES_BONEGROUPNAME, MAXBYTES_TEXTUREFILENAME, MAXBYTES_TOONFILENAME,
    MAXBYTES_RIGIDNAME, MAXBYTES_JOINTNAME, TOON_FIXEDNUM,
)
from pmdparser import MAGIC
from pmdmodel import (
    Model, Vertex, Material, BoneInfo, BoneType, BoneGroup, IKChain, MorphType,
    RigidInfo, JointInfo, TripletRange,
)

NOPREVBONE_ID = 0xffff
NONEXTBONE_ID = 0x0000
NOIKBONE_ID = 0x0000
NOLINKEDBONE_ID = 0xffff
MASK_FULLCOLLISION = 0xffff

MAX_VERTEX = 0xffff + 1
MAX_BYTE_COUNT = 0xff


def _text(text: Optional[str]) -> str:
    return text if text is not None else ""


class PmdExporter:
    def __init__(self, stream: FileWriteStream):
        if stream is None:
            raise ValueError('stream must not be None')
        self._stream = stream

    ################################################################################
    # Reference helpers
    @staticmethod
    def serial_of(obj, items: Sequence, what: str) -> int:
        """Serial number of obj, checked against its owning list."""
        if obj is None:
            raise ExportError(f'missing {what} reference')
        idx = obj.serial_number
        if not 0 <= idx < len(items) or items[idx] is not obj:
            raise ExportError(f'{what} {obj!r} is not in the model; run trimming() before saving')
        return idx

    def write_bone_id(self, model: Model, bone: Optional[BoneInfo], absent: int) -> None:
        if bone is None:
            self._stream.writeUnsignedShort(absent)
        else:
            self._stream.writeUnsignedShort(self.serial_of(bone, model.bones, 'bone'))

    ################################################################################
    def dump_model(self, model: Model) -> None:
        if model is None:
            raise ValueError('model must not be None')

        self.dump_header(model)
        self.dump_vertex_list(model)
        self.dump_surface_list(model)
        self.dump_material_list(model)
        self.dump_bone_list(model)
        self.dump_ik_chain_list(model)
        self.dump_morph_list(model)
        self.dump_morph_order(model)
        self.dump_bone_group_list(model)

        self.dump_global_info(model)
        self.dump_toon_map(model)
        self.dump_rigid_list(model)
        self.dump_joint_list(model)

        self._stream.flush()
        logging.debug(f"Saved model: {model} ({self._stream.position} bytes)")

    ################################################################################
    # Base sections
    def dump_header(self, model: Model) -> None:
        s = self._stream
        s.writeBytes(MAGIC)
        s.writeFloat(model.header_version)
        s.writeStr(_text(model.name.primary), MAXBYTES_MODELNAME)
        s.writeStr(_text(model.description.primary), MAXBYTES_MODELDESC)

    def dump_vertex_list(self, model: Model) -> None:
        s = self._stream
        vertices = model.vertices
        if len(vertices) > MAX_VERTEX:
            raise ExportError(f'too many vertices: {len(vertices)}')
        s.writeInt(len(vertices))
        for vertex in vertices:
            s.writeVector(vertex.position)
            s.writeVector(vertex.normal)
            s.writeVector(vertex.uv)
            self.write_bone_id(model, self._vertex_bone(vertex, vertex.bone_a), 0)
            self.write_bone_id(model, self._vertex_bone(vertex, vertex.bone_b), 0)
            s.writeByte(vertex.weight_a)
            s.writeBool(not vertex.edge_appearance)
        logging.debug(f"Saved {len(vertices)} vertices")

    @staticmethod
    def _vertex_bone(vertex: Vertex, bone: Optional[BoneInfo]) -> BoneInfo:
        if bone is None:
            raise ExportError(f'vertex {vertex.serial_number} has no bone')
        return bone

    def dump_surface_list(self, model: Model) -> None:
        s = self._stream
        surfaces = model.surfaces

        # materials must cover the surface list in order
        covered = [surface for mat in model.materials for surface in mat.surfaces]
        if len(covered) != len(surfaces) or any(a is not b for a, b in zip(covered, surfaces)):
            raise ExportError('surface list does not match the material surfaces; run trimming() before saving')

        s.writeInt(len(surfaces) * 3)
        for surface in surfaces:
            if not surface.is_completed():
                raise ExportError(f'incomplete surface {surface.serial_number}')
            for vertex in surface:
                s.writeUnsignedShort(self.serial_of(vertex, model.vertices, 'vertex'))
        logging.debug(f"Saved {len(surfaces)} surfaces")

    def dump_material_list(self, model: Model) -> None:
        s = self._stream
        s.writeInt(len(model.materials))
        for material in model.materials:
            self.dump_material(material)
        logging.debug(f"Saved {len(model.materials)} materials")

    def dump_material(self, material: Material) -> None:
        s = self._stream
        s.writeVector(material.diffuse)
        s.writeFloat(material.shininess)
        s.writeVector(material.specular[:3])
        s.writeVector(material.ambient[:3])

        shade = material.shade_info
        s.writeByte(shade.toon_index)
        s.writeBool(material.edge_appearance)
        s.writeInt(len(material.surfaces) * 3)

        text = shade.shading_file_text()
        filler = FILLER_NULL if not text else FILLER_FD
        s.writeStr(text, MAXBYTES_TEXTUREFILENAME, filler)

    def dump_bone_list(self, model: Model) -> None:
        s = self._stream
        bones = model.bones
        if len(bones) > MAX_BONE:
            raise ExportError(f'too many bones: {len(bones)}')
        s.writeUnsignedShort(len(bones))

        for bone in bones:
            s.writeStr(_text(bone.name.primary), MAXBYTES_BONENAME)
            self.write_bone_id(model, bone.prev_bone, NOPREVBONE_ID)
            self.write_bone_id(model, bone.next_bone, NONEXTBONE_ID)
            s.writeByte(bone.bone_type.encode())
            if bone.bone_type is BoneType.LINKEDROT:
                s.writeUnsignedShort(bone.rotation_ratio)
            else:
                self.write_bone_id(model, bone.ik_bone, NOIKBONE_ID)
            s.writeVector(bone.position)
        logging.debug(f"Saved {len(bones)} bones")

    def dump_ik_chain_list(self, model: Model) -> None:
        s = self._stream
        s.writeUnsignedShort(len(model.ik_chains))
        for chain in model.ik_chains:
            self.dump_ik_chain(model, chain)
        logging.debug(f"Saved {len(model.ik_chains)} IK chains")

    def dump_ik_chain(self, model: Model, chain: IKChain) -> None:
        s = self._stream
        if not chain.chained_bones:
            raise ExportError(f'IK chain without target: {chain!r}')
        if len(chain.chained_bones) - 1 > MAX_BYTE_COUNT:
            raise ExportError(f'too long IK chain: {chain!r}')

        s.writeUnsignedShort(self.serial_of(chain.ik_bone, model.bones, 'IK bone'))
        s.writeUnsignedShort(self.serial_of(chain.chained_bones[0], model.bones, 'IK target bone'))
        s.writeByte(len(chain.chained_bones) - 1)
        s.writeUnsignedShort(chain.ik_depth)
        s.writeFloat(chain.ik_weight)
        for bone in chain.chained_bones[1:]:
            s.writeUnsignedShort(self.serial_of(bone, model.bones, 'IK chain bone'))

    def dump_morph_list(self, model: Model) -> None:
        s = self._stream
        parts = model.number_morphs()
        try:
            merged = model.merge_morph_vertex()
        except ValueError as e:
            raise ExportError(str(e)) from None

        if not parts:
            s.writeUnsignedShort(0)
            logging.debug("Saved 0 morphs")
            return
        if len(parts) + 1 > MAX_BONE:
            raise ExportError(f'too many morphs: {len(parts)}')

        s.writeUnsignedShort(len(parts) + 1)

        s.writeStr("base", MAXBYTES_MORPHNAME)
        s.writeInt(len(merged))
        s.writeByte(MorphType.BASE.encode())
        for morph_vertex in merged:
            vertex = morph_vertex.base_vertex
            s.writeInt(self.serial_of(vertex, model.vertices, 'vertex'))
            s.writeVector(vertex.position)

        for part in parts:
            s.writeStr(_text(part.name.primary), MAXBYTES_MORPHNAME)
            s.writeInt(len(part.morph_vertices))
            s.writeByte(part.morph_type.encode())
            for morph_vertex in part:
                s.writeInt(morph_vertex.serial_number)
                s.writeVector(morph_vertex.offset)
        logging.debug(f"Saved {len(parts)} morphs, {len(merged)} morph vertices")

    def dump_morph_order(self, model: Model) -> None:
        s = self._stream
        parts = model.morph_list()
        if len(parts) > MAX_BYTE_COUNT:
            raise ExportError(f'too many morphs to order: {len(parts)}')
        s.writeByte(len(parts))

        # reversed type order, as the reference viewer writes it
        for morph_type in reversed(Model.MORPH_TYPES):
            for part in model.morph_map.get(morph_type, []):
                s.writeUnsignedShort(part.serial_number)

    def explicit_groups(self, model: Model) -> List[BoneGroup]:
        groups = model.bone_groups
        if not groups or not groups[0].is_default:
            raise ExportError('the first bone group must be the default group')
        explicit = list(groups[1:])
        if any(group.is_default for group in explicit):
            raise ExportError('only the first bone group can be the default group')
        if len(explicit) > MAX_BYTE_COUNT:
            raise ExportError(f'too many bone groups: {len(explicit)}')
        return explicit

    def dump_bone_group_list(self, model: Model) -> None:
        s = self._stream
        explicit = self.explicit_groups(model)

        s.writeByte(len(explicit))
        for group in explicit:
            s.writeStr(_text(group.name.primary), MAXBYTES_BONEGROUPNAME, FILLER_LF)

        s.writeInt(sum(len(group.bones) for group in explicit))
        for group in explicit:
            for bone in group:
                s.writeUnsignedShort(self.serial_of(bone, model.bones, 'grouped bone'))
                s.writeByte(group.serial_number)
        logging.debug(f"Saved {len(explicit)} bone groups")

    ################################################################################
    # Optional sections
    def dump_global_info(self, model: Model) -> None:
        s = self._stream
        has_global = model.has_global_text()
        s.writeBool(has_global)
        if not has_global:
            return

        s.writeStr(_text(model.name.global_text), MAXBYTES_MODELNAME)
        s.writeStr(_text(model.description.global_text), MAXBYTES_MODELDESC)
        for bone in model.bones:
            s.writeStr(_text(bone.name.global_text), MAXBYTES_BONENAME)
        for part in model.morph_list():
            s.writeStr(_text(part.name.global_text), MAXBYTES_MORPHNAME)
        for group in self.explicit_groups(model):
            s.writeStr(_text(group.name.global_text), MAXBYTES_BONEGROUPNAME)
        logging.debug("Saved English names")

    def dump_toon_map(self, model: Model) -> None:
        s = self._stream
        toon_map = model.toon_map
        for idx in range(TOON_FIXEDNUM):
            s.writeStr(_text(toon_map.get_indexed_toon(idx)), MAXBYTES_TOONFILENAME)
        logging.debug(f"Saved {TOON_FIXEDNUM} toon textures")

    def dump_rigid_list(self, model: Model) -> None:
        s = self._stream
        s.writeInt(len(model.rigids))
        for rigid in model.rigids:
            self.dump_rigid(model, rigid)
        logging.debug(f"Saved {len(model.rigids)} rigid bodies")

    def dump_rigid(self, model: Model, rigid: RigidInfo) -> None:
        s = self._stream
        s.writeStr(_text(rigid.name.primary), MAXBYTES_RIGIDNAME)
        self.write_bone_id(model, rigid.linked_bone, NOLINKEDBONE_ID)
        s.writeByte(self.serial_of(rigid.rigid_group, model.rigid_groups, 'rigid group'))

        mask = MASK_FULLCOLLISION
        for group in rigid.through_groups:
            mask &= ~(1 << self.serial_of(group, model.rigid_groups, 'rigid group'))
        s.writeUnsignedShort(mask)

        shape = rigid.shape
        s.writeByte(shape.shape_type.encode())
        s.writeFloat(shape.width)
        s.writeFloat(shape.height)
        s.writeFloat(shape.depth)

        s.writeVector(rigid.position)
        s.writeVector(rigid.rotation)

        dynamics = rigid.dynamics
        s.writeFloat(dynamics.mass)
        s.writeFloat(dynamics.damping_position)
        s.writeFloat(dynamics.damping_rotation)
        s.writeFloat(dynamics.restitution)
        s.writeFloat(dynamics.friction)

        s.writeByte(rigid.behavior_type.encode())

    def dump_joint_list(self, model: Model) -> None:
        s = self._stream
        s.writeInt(len(model.joints))
        for joint in model.joints:
            self.dump_joint(model, joint)
        logging.debug(f"Saved {len(model.joints)} joints")

    def dump_joint(self, model: Model, joint: JointInfo) -> None:
        s = self._stream
        s.writeStr(_text(joint.name.primary), MAXBYTES_JOINTNAME)
        s.writeInt(self.serial_of(joint.rigid_a, model.rigids, 'rigid'))
        s.writeInt(self.serial_of(joint.rigid_b, model.rigids, 'rigid'))
        s.writeVector(joint.position)
        s.writeVector(joint.rotation)
        self.dump_triplet_range(joint.position_range)
        self.dump_triplet_range(joint.rotation_range)
        s.writeVector(joint.elastic_position)
        s.writeVector(joint.elastic_rotation)

    def dump_triplet_range(self, limits: TripletRange) -> None:
        s = self._stream
        s.writeVector((limits.x_from, limits.y_from, limits.z_from))
        s.writeVector((limits.x_to, limits.y_to, limits.z_to))
