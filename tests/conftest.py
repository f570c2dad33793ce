import io

import pytest

import pypmd
from pmdstream import FileWriteStream
from pmdexporter import PmdExporter
from pmdmodel import (
    Model, I18nText, Vertex, Surface, Material, BoneInfo, BoneType, IKChain,
    MorphPart, MorphType, MorphVertex, RigidInfo, RigidShapeType, RigidBehaviorType,
    JointInfo, Pos3d, Vec3d, Pos2d, Rad3d, Deg3d, Color,
)


def build_sample_model() -> Model:
    """A small model touching every section. All floats are exact in float32."""
    model = Model()
    model.name = I18nText('サンプル', 'Sample')
    model.description = I18nText('説明\n二行目', 'Description')

    center = BoneInfo('センター', BoneType.ROTMOV)
    upper = BoneInfo('上半身')
    head = BoneInfo('頭')
    leg_ik = BoneInfo('右足ＩＫ', BoneType.IK)
    leg = BoneInfo('右足', BoneType.UNDERIK)
    knee = BoneInfo('右ひざ', BoneType.UNDERIK)
    ankle = BoneInfo('右足首', BoneType.IKCONNECTED)
    eye = BoneInfo('右目', BoneType.LINKEDROT)
    model.bones.extend([center, upper, head, leg_ik, leg, knee, ankle, eye])

    center.position = Pos3d(0.0, 8.0, 0.0)
    center.name.global_text = 'center'
    upper.prev_bone = center
    upper.next_bone = head
    upper.position = Pos3d(0.0, 10.0, 0.0)
    head.prev_bone = upper
    head.position = Pos3d(0.0, 15.5, 0.25)
    leg_ik.prev_bone = center
    leg_ik.next_bone = ankle
    leg.prev_bone = center
    leg.ik_bone = leg_ik
    knee.prev_bone = leg
    knee.ik_bone = leg_ik
    ankle.prev_bone = knee
    eye.prev_bone = head
    eye.next_bone = head
    eye.rotation_ratio = 20

    chain = IKChain(leg_ik, 15, 0.5)
    chain.chained_bones.extend([ankle, knee, leg])
    model.ik_chains.append(chain)

    body = model.add_bone_group('体')
    body.bones.extend([upper, head])
    legs = model.add_bone_group('足')
    legs.name.global_text = 'Legs'
    legs.bones.extend([leg_ik, leg, knee, ankle])

    vertices = []
    for idx in range(5):
        vertex = Vertex(Pos3d(float(idx), 1.5 * idx, -0.5), Vec3d(0.0, 0.0, 1.0), Pos2d(0.25 * idx, 0.5))
        vertex.set_bone_pair(upper, head if idx % 2 else center)
        vertex.weight_a = 20 * idx
        vertices.append(vertex)
    vertices[4].edge_appearance = False
    model.vertices.extend(vertices)
    v0, v1, v2, v3, v4 = vertices

    s0 = Surface(v0, v1, v2)
    s1 = Surface(v1, v3, v2)
    s2 = Surface(v2, v3, v4)
    model.surfaces.extend([s0, s1, s2])

    skin = Material()
    skin.diffuse = Color(1.0, 0.75, 0.5, 0.875)
    skin.specular = Color(0.25, 0.25, 0.25)
    skin.shininess = 5.0
    skin.ambient = Color(0.5, 0.375, 0.25)
    skin.shade_info.toon_index = 0
    skin.shade_info.texture_file = 'body.bmp'
    skin.shade_info.spheremap_file = 'metal.sph'
    skin.surfaces.extend([s0, s1])
    model.add_material(skin)

    hair = Material()
    hair.diffuse = Color(0.0, 0.0, 0.125, 1.0)
    hair.shade_info.toon_index = 0xff
    hair.edge_appearance = False
    hair.surfaces.append(s2)
    model.add_material(hair)

    blink = MorphPart('まばたき', MorphType.EYE)
    blink.name.global_text = 'blink'
    blink.morph_vertices.extend([MorphVertex(v1, Pos3d(0.0, -0.5, 0.0)), MorphVertex(v2, Pos3d(0.0, -0.25, 0.0))])
    mouth = MorphPart('あ', MorphType.LIP)
    mouth.morph_vertices.extend([MorphVertex(v2, Pos3d(0.0, 0.0, 0.5)), MorphVertex(v3, Pos3d(0.125, 0.0, 0.0))])
    brow = MorphPart('困る', MorphType.EYEBROW)
    brow.morph_vertices.append(MorphVertex(v0, Pos3d(0.0, 1.0, 0.0)))
    extra = MorphPart('照れ', MorphType.EXTRA)
    extra.morph_vertices.append(MorphVertex(v4, Pos3d(2.0, 0.0, 0.0)))
    for part in (blink, mouth, brow, extra):
        model.add_morph(part)

    model.toon_map.set_indexed_toon(3, 'mytoon.bmp')

    groups = model.rigid_groups
    r_head = RigidInfo('頭')
    r_head.linked_bone = head
    r_head.set_rigid_group(groups[0])
    r_head.shape.shape_type = RigidShapeType.SPHERE
    r_head.shape.radius = 1.5
    r_head.position = Pos3d(0.0, 15.0, 0.0)
    r_head.through_groups.append(groups[0])
    r_head.dynamics.mass = 1.0
    r_head.dynamics.damping_position = 0.5
    r_head.dynamics.damping_rotation = 0.5
    r_head.dynamics.friction = 0.5

    r_hair = RigidInfo('髪')
    r_hair.linked_bone = head
    r_hair.set_rigid_group(groups[1])
    r_hair.shape.shape_type = RigidShapeType.BOX
    r_hair.shape.width, r_hair.shape.height, r_hair.shape.depth = 0.5, 2.0, 0.25
    r_hair.rotation = Rad3d(0.0, 0.5, 0.0)
    r_hair.behavior_type = RigidBehaviorType.ONLYDYNAMICS
    r_hair.through_groups.extend([groups[0], groups[15]])

    r_free = RigidInfo('飾り')
    r_free.set_rigid_group(groups[2])
    r_free.shape.shape_type = RigidShapeType.CAPSULE
    r_free.shape.radius, r_free.shape.height = 0.25, 1.0
    r_free.behavior_type = RigidBehaviorType.BONEDDYNAMICS
    model.rigids.extend([r_head, r_hair, r_free])

    joint = JointInfo('首')
    joint.set_rigid_pair(r_head, r_hair)
    joint.position = Pos3d(0.0, 14.0, 0.0)
    joint.position_range.set_x_range(1.0, -1.0)
    joint.rotation_range.set_y_range(-0.5, 0.5)
    joint.rotation_range.set_z_range(0.25, -0.25)
    joint.elastic_position = Pos3d(0.0, 0.5, 0.0)
    joint.elastic_rotation = Deg3d(10.0, 0.0, 0.0)
    model.joints.append(joint)

    return model


def build_box_pmd() -> bytes:
    """
    A legacy file: four vertices, two triangles, one material and an empty
    bone list, with vertices weighted to bone indices 0 and 50.
    """
    buf = io.BytesIO()
    fs = FileWriteStream(buf)
    fs.writeBytes(b'Pmd')
    fs.writeFloat(1.0)
    fs.writeStr('Box', 20)
    fs.writeStr('', 256)

    fs.writeInt(4)
    for x, y in ((0.0, 0.0), (1.0, 0.0), (0.0, 1.0), (1.0, 1.0)):
        fs.writeVector((x, y, 0.0))
        fs.writeVector((0.0, 0.0, -1.0))
        fs.writeVector((x, y))
        fs.writeUnsignedShort(0)
        fs.writeUnsignedShort(50)
        fs.writeByte(100)
        fs.writeByte(0)

    fs.writeInt(6)
    for vid in (0, 1, 2, 2, 1, 3):
        fs.writeUnsignedShort(vid)

    fs.writeInt(1)
    fs.writeVector((0.5, 0.5, 0.5, 1.0))
    fs.writeFloat(0.0)
    fs.writeVector((0.0, 0.0, 0.0))
    fs.writeVector((0.25, 0.25, 0.25))
    fs.writeByte(0xff)
    fs.writeByte(0)
    fs.writeInt(6)
    fs.writeStr('', 20, b'\x00')

    fs.writeUnsignedShort(0)  # bones
    fs.writeUnsignedShort(0)  # IK chains
    fs.writeUnsignedShort(0)  # morphs
    fs.writeByte(0)           # morph order
    fs.writeByte(0)           # bone groups
    fs.writeInt(0)            # grouped bones
    return buf.getvalue()


def dump_sections(model: Model, english: bool = True, toon: bool = True, physics: bool = True) -> bytes:
    """Write the base sections and only the requested optional ones."""
    buf = io.BytesIO()
    exporter = PmdExporter(FileWriteStream(buf))
    for dump in (exporter.dump_header, exporter.dump_vertex_list, exporter.dump_surface_list,
                 exporter.dump_material_list, exporter.dump_bone_list, exporter.dump_ik_chain_list,
                 exporter.dump_morph_list, exporter.dump_morph_order, exporter.dump_bone_group_list):
        dump(model)
    if english:
        exporter.dump_global_info(model)
        if toon:
            exporter.dump_toon_map(model)
            if physics:
                exporter.dump_rigid_list(model)
                exporter.dump_joint_list(model)
    return buf.getvalue()


def reload(model: Model) -> Model:
    return pypmd.loads(pypmd.dumps(model))


@pytest.fixture
def sample_model() -> Model:
    return build_sample_model()


@pytest.fixture
def sample_bytes() -> bytes:
    return pypmd.dumps(build_sample_model())


@pytest.fixture
def box_bytes() -> bytes:
    return build_box_pmd()
