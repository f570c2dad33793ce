# -*- coding: utf-8 -*-
"""
pmdxml.py - Exports a Model as a "pmdModel" XML document.

Cross references use generated ids: vtx<N> for vertices, bn<N> for bones,
rd<N> for rigid bodies, rg<N> for rigid groups, sg<N> for surface groups
(the surfaces of one material) and tf<N> for toon files.
"""
from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import BinaryIO

from pmdmodel import (
    Model, Material, Vertex, BoneInfo, BoneGroup, BoneType, IKChain, MorphPart,
    RigidInfo, RigidShapeType, RigidGroup, JointInfo, TripletRange, I18nText,
)
from pmdstream import LF, TOON_FIXEDNUM, normalize_break

NS_PMDXML = 'http://mikutoga.sourceforge.jp/xml/ns/pmdxml/2010'
VER_PMDXML = '1.0'
GENERATOR = 'pmdtool'

PFX_SURFACEGROUP = 'sg'
PFX_TOONFILE = 'tf'
PFX_VERTEX = 'vtx'
PFX_BONE = 'bn'
PFX_RIGID = 'rd'
PFX_RIGIDGROUP = 'rg'

LANG_GLOBAL = 'en'


def _float(value: float) -> str:
    return repr(float(value))


def _bool(value: bool) -> str:
    return 'true' if value else 'false'


def _set_floats(elem: ET.Element, **values: float) -> ET.Element:
    for key, value in values.items():
        elem.set(key, _float(value))
    return elem


class PmdXmlExporter:
    def __init__(self, stream: BinaryIO, indent: int = 2, generator: str = GENERATOR):
        if stream is None:
            raise ValueError('stream must not be None')
        self._stream = stream
        self.indent = indent
        self.generator = generator

    def dump_model(self, model: Model) -> None:
        root = self.build_tree(model)
        tree = ET.ElementTree(root)
        if self.indent > 0:
            ET.indent(tree, space=' ' * self.indent)
        tree.write(self._stream, encoding='utf-8', xml_declaration=True)
        logging.debug(f"Saved XML for {model}")

    ################################################################################
    def build_tree(self, model: Model) -> ET.Element:
        root = ET.Element('pmdModel', {'xmlns': NS_PMDXML, 'schemaVersion': VER_PMDXML})
        self.put_model_name(root, model)
        self.put_meta(root, model)
        self.put_material_list(root, model)
        self.put_toon_map(root, model)
        self.put_bone_list(root, model)
        self.put_bone_group_list(root, model)
        self.put_ik_chain_list(root, model)
        self.put_morph_list(root, model)
        self.put_rigid_list(root, model)
        self.put_rigid_group_list(root, model)
        self.put_joint_list(root, model)
        self.put_surface_group_list(root, model)
        self.put_vertex_list(root, model)
        return root

    @staticmethod
    def put_i18n_name(elem: ET.Element, text: I18nText) -> None:
        if text.has_global():
            ET.SubElement(elem, 'i18nName', {'lang': LANG_GLOBAL, 'name': text.global_text})

    @staticmethod
    def put_position(elem: ET.Element, position, tag: str = 'position') -> ET.Element:
        return _set_floats(ET.SubElement(elem, tag), x=position[0], y=position[1], z=position[2])

    @staticmethod
    def put_rad_rotation(elem: ET.Element, rotation) -> ET.Element:
        return _set_floats(ET.SubElement(elem, 'radRotation'),
                           xRad=rotation[0], yRad=rotation[1], zRad=rotation[2])

    @staticmethod
    def put_br_text(elem: ET.Element, text: str) -> None:
        """Write text with each line break as a <br/> element."""
        lines = normalize_break(text).split(LF)
        elem.text = lines[0]
        for line in lines[1:]:
            br = ET.SubElement(elem, 'br')
            br.tail = line

    ################################################################################
    def put_model_name(self, root: ET.Element, model: Model) -> None:
        root.set('name', model.name.primary or '')
        self.put_i18n_name(root, model.name)

    def put_meta(self, root: ET.Element, model: Model) -> None:
        ET.SubElement(root, 'meta', {'name': 'generator', 'content': self.generator})
        ET.SubElement(root, 'meta', {'name': 'siteURL', 'content': ''})
        ET.SubElement(root, 'meta', {'name': 'imageURL', 'content': ''})

        desc = ET.SubElement(root, 'description')
        self.put_br_text(desc, model.description.primary or '')
        if model.description.has_global():
            desc = ET.SubElement(root, 'description', {'lang': LANG_GLOBAL})
            self.put_br_text(desc, model.description.global_text)

    def put_material_list(self, root: ET.Element, model: Model) -> None:
        elem = ET.SubElement(root, 'materialList')
        for material in model.materials:
            self.put_material(elem, material)

    def put_material(self, parent: ET.Element, material: Material) -> None:
        elem = ET.SubElement(parent, 'material')
        if material.name.has_primary():
            elem.set('name', material.name.primary)
        elem.set('showEdge', _bool(material.edge_appearance))
        elem.set('surfaceGroupIdRef', f'{PFX_SURFACEGROUP}{material.serial_number}')
        self.put_i18n_name(elem, material.name)

        r, g, b, a = material.diffuse
        _set_floats(ET.SubElement(elem, 'diffuse'), r=r, g=g, b=b, alpha=a)
        r, g, b, _ = material.specular
        _set_floats(ET.SubElement(elem, 'specular'), r=r, g=g, b=b, shininess=material.shininess)
        r, g, b, _ = material.ambient
        _set_floats(ET.SubElement(elem, 'ambient'), r=r, g=g, b=b)

        shade = material.shade_info
        if shade.is_valid_toon_index():
            ET.SubElement(elem, 'toon', {'toonFileIdRef': f'{PFX_TOONFILE}{shade.toon_index}'})
        if shade.texture_file:
            ET.SubElement(elem, 'textureFile', {'winFileName': shade.texture_file})
        if shade.spheremap_file:
            ET.SubElement(elem, 'spheremapFile', {'winFileName': shade.spheremap_file})

    def put_toon_map(self, root: ET.Element, model: Model) -> None:
        elem = ET.SubElement(root, 'toonMap')
        for idx in range(TOON_FIXEDNUM):
            toon = model.toon_map.get_indexed_toon(idx)
            if toon is None:
                continue
            ET.SubElement(elem, 'toonDef', {
                'toonFileId': f'{PFX_TOONFILE}{idx}',
                'index': str(idx),
                'winFileName': toon,
            })

    def put_bone_list(self, root: ET.Element, model: Model) -> None:
        elem = ET.SubElement(root, 'boneList')
        for bone in model.bones:
            self.put_bone(elem, bone)

    def put_bone(self, parent: ET.Element, bone: BoneInfo) -> None:
        elem = ET.SubElement(parent, 'bone', {
            'name': bone.name.primary or '',
            'boneId': f'{PFX_BONE}{bone.serial_number}',
            'type': bone.bone_type.name,
        })
        self.put_i18n_name(elem, bone.name)
        self.put_position(elem, bone.position)

        if bone.bone_type is BoneType.LINKEDROT:
            ET.SubElement(elem, 'rotationRatio', {'ratio': str(bone.rotation_ratio)})
        elif bone.ik_bone is not None:
            ET.SubElement(elem, 'ikBone', {'boneIdRef': f'{PFX_BONE}{bone.ik_bone.serial_number}'})

        chain = ET.SubElement(elem, 'boneChain')
        if bone.prev_bone is not None:
            chain.set('prevBoneIdRef', f'{PFX_BONE}{bone.prev_bone.serial_number}')
        if bone.next_bone is not None:
            chain.set('nextBoneIdRef', f'{PFX_BONE}{bone.next_bone.serial_number}')

    def put_bone_group_list(self, root: ET.Element, model: Model) -> None:
        elem = ET.SubElement(root, 'boneGroupList')
        for group in model.explicit_bone_groups():
            self.put_bone_group(elem, group)

    def put_bone_group(self, parent: ET.Element, group: BoneGroup) -> None:
        elem = ET.SubElement(parent, 'boneGroup', {'name': group.name.primary or ''})
        self.put_i18n_name(elem, group.name)
        for bone in group:
            ET.SubElement(elem, 'boneGroupMember', {'boneIdRef': f'{PFX_BONE}{bone.serial_number}'})

    def put_ik_chain_list(self, root: ET.Element, model: Model) -> None:
        elem = ET.SubElement(root, 'ikChainList')
        for chain in model.ik_chains:
            self.put_ik_chain(elem, chain)

    def put_ik_chain(self, parent: ET.Element, chain: IKChain) -> None:
        elem = ET.SubElement(parent, 'ikChain', {
            'ikBoneIdRef': f'{PFX_BONE}{chain.ik_bone.serial_number}' if chain.ik_bone else '',
            'recursiveDepth': str(chain.ik_depth),
            'weight': _float(chain.ik_weight),
        })
        for bone in chain:
            ET.SubElement(elem, 'chainOrder', {'boneIdRef': f'{PFX_BONE}{bone.serial_number}'})

    def put_morph_list(self, root: ET.Element, model: Model) -> None:
        elem = ET.SubElement(root, 'morphList')
        for part in model.morph_list():
            self.put_morph(elem, part)

    def put_morph(self, parent: ET.Element, part: MorphPart) -> None:
        elem = ET.SubElement(parent, 'morph', {
            'name': part.name.primary or '',
            'type': part.morph_type.name,
        })
        self.put_i18n_name(elem, part.name)
        for morph_vertex in part:
            mv = ET.SubElement(elem, 'morphVertex', {
                'vtxIdRef': f'{PFX_VERTEX}{morph_vertex.base_vertex.serial_number}'})
            offset = morph_vertex.offset
            _set_floats(mv, xOff=offset.x, yOff=offset.y, zOff=offset.z)

    def put_rigid_list(self, root: ET.Element, model: Model) -> None:
        elem = ET.SubElement(root, 'rigidList')
        for rigid in model.rigids:
            self.put_rigid(elem, rigid)

    def put_rigid(self, parent: ET.Element, rigid: RigidInfo) -> None:
        elem = ET.SubElement(parent, 'rigid', {
            'name': rigid.name.primary or '',
            'rigidId': f'{PFX_RIGID}{rigid.serial_number}',
            'behavior': rigid.behavior_type.name,
        })
        self.put_i18n_name(elem, rigid.name)
        if rigid.linked_bone is not None:
            ET.SubElement(elem, 'linkedBone', {'boneIdRef': f'{PFX_BONE}{rigid.linked_bone.serial_number}'})

        shape = rigid.shape
        if shape.shape_type is RigidShapeType.SPHERE:
            _set_floats(ET.SubElement(elem, 'rigidShapeSphere'), radius=shape.radius)
        elif shape.shape_type is RigidShapeType.CAPSULE:
            _set_floats(ET.SubElement(elem, 'rigidShapeCapsule'), height=shape.height, radius=shape.radius)
        else:
            _set_floats(ET.SubElement(elem, 'rigidShapeBox'),
                        width=shape.width, height=shape.height, depth=shape.depth)

        self.put_position(elem, rigid.position)
        self.put_rad_rotation(elem, rigid.rotation)

        dynamics = rigid.dynamics
        _set_floats(ET.SubElement(elem, 'dynamics'),
                    mass=dynamics.mass,
                    dampingPosition=dynamics.damping_position,
                    dampingRotation=dynamics.damping_rotation,
                    restitution=dynamics.restitution,
                    friction=dynamics.friction)

        for group in rigid.through_groups:
            ET.SubElement(elem, 'throughRigidGroup', {'rigidGroupIdRef': f'{PFX_RIGIDGROUP}{group.group_number}'})

    def put_rigid_group_list(self, root: ET.Element, model: Model) -> None:
        elem = ET.SubElement(root, 'rigidGroupList')
        for group in model.rigid_groups:
            self.put_rigid_group(elem, group)

    def put_rigid_group(self, parent: ET.Element, group: RigidGroup) -> None:
        elem = ET.SubElement(parent, 'rigidGroup', {'rigidGroupId': f'{PFX_RIGIDGROUP}{group.group_number}'})
        for rigid in group:
            ET.SubElement(elem, 'rigidGroupMember', {'rigidIdRef': f'{PFX_RIGID}{rigid.serial_number}'})

    def put_joint_list(self, root: ET.Element, model: Model) -> None:
        elem = ET.SubElement(root, 'jointList')
        for joint in model.joints:
            self.put_joint(elem, joint)

    def put_joint(self, parent: ET.Element, joint: JointInfo) -> None:
        elem = ET.SubElement(parent, 'joint', {'name': joint.name.primary or ''})
        self.put_i18n_name(elem, joint.name)
        ET.SubElement(elem, 'jointedRigidPair', {
            'rigidIdRef1': f'{PFX_RIGID}{joint.rigid_a.serial_number}',
            'rigidIdRef2': f'{PFX_RIGID}{joint.rigid_b.serial_number}',
        })
        self.put_position(elem, joint.position)
        self.put_rad_rotation(elem, joint.rotation)
        self.put_range(elem, 'limitPosition', joint.position_range)
        self.put_range(elem, 'limitRotation', joint.rotation_range)
        self.put_position(elem, joint.elastic_position, 'elasticPosition')
        rot = joint.elastic_rotation
        _set_floats(ET.SubElement(elem, 'elasticRotation'), xDeg=rot.x, yDeg=rot.y, zDeg=rot.z)

    @staticmethod
    def put_range(parent: ET.Element, tag: str, limits: TripletRange) -> None:
        _set_floats(ET.SubElement(parent, tag),
                    xFrom=limits.x_from, xTo=limits.x_to,
                    yFrom=limits.y_from, yTo=limits.y_to,
                    zFrom=limits.z_from, zTo=limits.z_to)

    def put_surface_group_list(self, root: ET.Element, model: Model) -> None:
        elem = ET.SubElement(root, 'surfaceGroupList')
        for material in model.materials:
            group = ET.SubElement(elem, 'surfaceGroup', {'surfaceGroupId': f'{PFX_SURFACEGROUP}{material.serial_number}'})
            for surface in material:
                v1, v2, v3 = surface.vertices
                ET.SubElement(group, 'surface', {
                    'vtxIdRef1': f'{PFX_VERTEX}{v1.serial_number}',
                    'vtxIdRef2': f'{PFX_VERTEX}{v2.serial_number}',
                    'vtxIdRef3': f'{PFX_VERTEX}{v3.serial_number}',
                })

    def put_vertex_list(self, root: ET.Element, model: Model) -> None:
        elem = ET.SubElement(root, 'vertexList')
        for vertex in model.vertices:
            self.put_vertex(elem, vertex)

    def put_vertex(self, parent: ET.Element, vertex: Vertex) -> None:
        elem = ET.SubElement(parent, 'vertex', {
            'vtxId': f'{PFX_VERTEX}{vertex.serial_number}',
            'showEdge': _bool(vertex.edge_appearance),
        })
        self.put_position(elem, vertex.position)
        n = vertex.normal
        _set_floats(ET.SubElement(elem, 'normal'), x=n.x, y=n.y, z=n.z)
        _set_floats(ET.SubElement(elem, 'uvMap'), u=vertex.uv.x, v=vertex.uv.y)
        ET.SubElement(elem, 'skinning', {
            'boneIdRef1': f'{PFX_BONE}{vertex.bone_a.serial_number}' if vertex.bone_a else '',
            'boneIdRef2': f'{PFX_BONE}{vertex.bone_b.serial_number}' if vertex.bone_b else '',
            'weightBalance': str(vertex.weight_a),
        })
