import io
import logging

import pytest

import pypmd
from conftest import reload
from pmdstream import FileReadStream, FileWriteStream, InvalidFileError, TruncatedFileError
from pmdparser import PmdParser, ParseStage
from pmdloader import PmdLoader
from pmdexporter import PmdExporter
from pmdmodel import BoneType, MorphPart, MorphType, RigidShapeType, RigidBehaviorType


def section_offset(data: bytes, stage: ParseStage) -> int:
    """Offset of the first record of a section."""
    stream = FileReadStream(io.BytesIO(data))
    parser = PmdParser(stream)
    found = {}
    parser.set_handler(stage, lambda *args: found.setdefault('offset', stream.position))
    parser.parse()
    return found['offset']


def patched(data: bytes, offset: int, value: int) -> bytes:
    buf = bytearray(data)
    buf[offset] = value
    return bytes(buf)


def test_box_legacy_file(box_bytes, caplog):
    with caplog.at_level(logging.WARNING):
        model = pypmd.loads(box_bytes)

    assert model.name.primary == 'Box'
    assert model.description.primary == ''
    assert not model.name.has_global()
    assert len(model.vertices) == 4
    assert len(model.surfaces) == 2

    # placeholder bones up to the highest vertex bone index
    assert len(model.bones) == 51
    assert all(b.bone_type is BoneType.ROTATE for b in model.bones)
    assert all(b.prev_bone is None and b.next_bone is None for b in model.bones)
    assert any('beyond the bone list' in rec.message for rec in caplog.records)

    for vertex in model.vertices:
        assert vertex.bone_a is model.bones[0]
        assert vertex.bone_b is model.bones[50]
        assert vertex.weight_a == 100
        assert vertex.edge_appearance

    (material,) = model.materials
    assert material.diffuse == (0.5, 0.5, 0.5, 1.0)
    assert material.ambient == (0.25, 0.25, 0.25, 1.0)
    assert material.shade_info.toon_index == 0xff
    assert material.shade_info.texture_file is None
    assert material.shade_info.spheremap_file is None
    assert material.surfaces == list(model.surfaces)

    assert model.morph_list() == []
    assert model.rigids == [] and model.joints == []
    assert model.toon_map.is_default_map()
    assert model.default_bone_group.bones == list(model.bones)


def test_box_survives_roundtrip(box_bytes):
    model = reload(pypmd.loads(box_bytes))
    assert len(model.bones) == 51
    assert [s.vertices[2].serial_number for s in model.surfaces] == [2, 3]


def test_bone_links_resolve(sample_bytes):
    model = pypmd.loads(sample_bytes)
    center, upper, head, leg_ik, leg, knee, ankle, eye = model.bones
    assert center.prev_bone is None
    assert center.next_bone is None
    assert upper.prev_bone is center
    assert upper.next_bone is head
    assert leg.ik_bone is leg_ik
    assert knee.ik_bone is leg_ik
    assert leg_ik.ik_bone is None
    assert eye.bone_type is BoneType.LINKEDROT
    assert eye.rotation_ratio == 20
    assert eye.ik_bone is None
    assert eye.next_bone is head


def test_next_and_ik_links_to_first_bone_are_lost(sample_model):
    # index 0 doubles as "no bone" for next and IK links, not for prev links
    center, upper, head = sample_model.bones[:3]
    upper.next_bone = center
    head.ik_bone = center
    head.prev_bone = center

    model = reload(sample_model)
    assert model.bones[1].next_bone is None
    assert model.bones[2].ik_bone is None
    assert model.bones[2].prev_bone is model.bones[0]


def test_ik_chain(sample_bytes):
    model = pypmd.loads(sample_bytes)
    (chain,) = model.ik_chains
    bones = model.bones
    assert chain.ik_bone is bones[3]
    assert chain.target is bones[6]
    assert chain.chained_bones == [bones[6], bones[5], bones[4]]
    assert chain.ik_depth == 15
    assert chain.ik_weight == 0.5


def test_bone_groups(sample_bytes):
    model = pypmd.loads(sample_bytes)
    bones = model.bones
    assert len(model.bone_groups) == 3
    default, body, legs = model.bone_groups
    assert default.is_default
    assert default.bones == [bones[0], bones[7]]
    assert body.name.primary == '体'
    assert body.bones == [bones[1], bones[2]]
    assert legs.name.primary == '足'
    assert legs.name.global_text == 'Legs'
    assert legs.bones == bones[3:7]


def test_group_zero_membership_is_ignored(sample_bytes):
    offset = section_offset(sample_bytes, ParseStage.GROUPEDBONE_LIST)
    model = pypmd.loads(patched(sample_bytes, offset + 2, 0))
    bones = model.bones
    assert model.bone_groups[1].bones == [bones[2]]
    assert bones[1] in model.default_bone_group.bones


def test_morphs(sample_bytes):
    model = pypmd.loads(sample_bytes)
    vertices = model.vertices
    assert [p.name.primary for p in model.morph_list()] == ['困る', 'まばたき', 'あ', '照れ']
    (blink,) = model.morph_map[MorphType.EYE]
    assert blink.name.global_text == 'blink'
    assert [mv.base_vertex for mv in blink] == [vertices[1], vertices[2]]
    assert [mv.offset for mv in blink] == [(0.0, -0.5, 0.0), (0.0, -0.25, 0.0)]
    assert [mv.serial_number for mv in blink] == [1, 2]
    assert all(p.morph_type is not MorphType.BASE for p in model.morph_list())


def test_morph_serials_follow_file_until_renumbered(sample_bytes):
    model = pypmd.loads(sample_bytes)
    assert [p.serial_number for p in model.morph_list()] == [1, 2, 3, 4]

    added = model.add_morph(MorphPart('笑い', MorphType.EYEBROW))
    assert [p.serial_number for p in model.morph_list()] == [1, -1, 2, 3, 4]
    assert model.number_morphs()[1] is added
    assert [p.serial_number for p in model.morph_list()] == [1, 2, 3, 4, 5]


def test_morphs_missing_from_order_are_appended(sample_model, caplog):
    class NoOrderExporter(PmdExporter):
        def dump_morph_order(self, model):
            self._stream.writeByte(0)

    buf = io.BytesIO()
    NoOrderExporter(FileWriteStream(buf)).dump_model(sample_model)

    with caplog.at_level(logging.WARNING):
        model = pypmd.loads(buf.getvalue())

    assert [p.name.primary for p in model.morph_list()] == ['困る', 'まばたき', 'あ', '照れ']
    warnings = [rec for rec in caplog.records if 'not in the display order' in rec.message]
    assert len(warnings) == 4


def test_first_morph_must_be_base(sample_bytes):
    offset = section_offset(sample_bytes, ParseStage.MORPH_LIST)
    # name, vertex count, then the type byte
    with pytest.raises(InvalidFileError, match='base morph'):
        pypmd.loads(patched(sample_bytes, offset + 24, MorphType.EYE))


def test_unknown_bone_type(sample_bytes):
    offset = section_offset(sample_bytes, ParseStage.BONE_LIST)
    with pytest.raises(InvalidFileError, match='BoneType') as excinfo:
        pypmd.loads(patched(sample_bytes, offset + 24, 10))
    assert excinfo.value.offset is not None


def test_vertex_index_out_of_range(box_bytes):
    offset = section_offset(box_bytes, ParseStage.SURFACE_LIST)
    with pytest.raises(InvalidFileError, match='vertex index out of range') as excinfo:
        pypmd.loads(patched(box_bytes, offset, 9))
    assert excinfo.value.offset == offset + 6


def test_degenerate_surface(box_bytes):
    offset = section_offset(box_bytes, ParseStage.SURFACE_LIST)
    with pytest.raises(InvalidFileError, match='degenerate'):
        pypmd.loads(patched(box_bytes, offset + 2, 0))


def test_materials_must_cover_all_surfaces(box_bytes):
    offset = section_offset(box_bytes, ParseStage.MATERIAL_LIST)
    # one surface instead of two
    data = patched(box_bytes, offset + 46, 3)
    with pytest.raises(InvalidFileError, match='materials cover 1 of 2 surfaces') as excinfo:
        pypmd.loads(data)
    assert excinfo.value.offset is not None


def test_weight_out_of_range(box_bytes):
    offset = section_offset(box_bytes, ParseStage.VERTEX_LIST)
    with pytest.raises(InvalidFileError, match='weight'):
        pypmd.loads(patched(box_bytes, offset + 36, 101))


def test_materials(sample_bytes):
    model = pypmd.loads(sample_bytes)
    skin, hair = model.materials
    assert skin.surfaces == list(model.surfaces[:2])
    assert hair.surfaces == [model.surfaces[2]]
    assert skin.shade_info.texture_file == 'body.bmp'
    assert skin.shade_info.spheremap_file == 'metal.sph'
    assert skin.shade_info.toon_file_name == 'toon01.bmp'
    assert hair.shade_info.toon_index == 0xff
    assert not hair.edge_appearance
    assert skin.specular == (0.25, 0.25, 0.25, 1.0)


def test_toon_map(sample_bytes):
    model = pypmd.loads(sample_bytes)
    assert model.toon_map[3] == 'mytoon.bmp'
    assert not model.toon_map.is_default_map()
    assert model.materials[0].shade_info.toon_map is model.toon_map


def test_rigids_and_joints(sample_bytes):
    model = pypmd.loads(sample_bytes)
    head, hair, free = model.rigids
    groups = model.rigid_groups

    assert head.linked_bone is model.bones[2]
    assert head.shape.shape_type is RigidShapeType.SPHERE
    assert head.shape.radius == 1.5
    assert head.rigid_group is groups[0]
    assert head.through_groups == [groups[0]]
    assert hair.through_groups == [groups[0], groups[15]]
    assert hair.behavior_type is RigidBehaviorType.ONLYDYNAMICS
    assert free.linked_bone is None
    assert free.through_groups == []
    assert groups[2].rigids == [free]

    (joint,) = model.joints
    assert joint.rigid_a is head and joint.rigid_b is hair
    assert (joint.position_range.x_from, joint.position_range.x_to) == (-1.0, 1.0)
    assert (joint.rotation_range.z_from, joint.rotation_range.z_to) == (-0.25, 0.25)
    assert joint.elastic_rotation == (10.0, 0.0, 0.0)


def test_english_names(sample_bytes):
    model = pypmd.loads(sample_bytes)
    assert model.name.global_text == 'Sample'
    assert model.description.global_text == 'Description'
    assert model.bones[0].name.global_text == 'center'
    assert model.bones[1].name.global_text == ''


def test_truncated_file_reports_offset(sample_bytes):
    with pytest.raises(TruncatedFileError) as excinfo:
        pypmd.loads(sample_bytes[:-1])
    assert excinfo.value.offset == len(sample_bytes) - 1


def test_trailing_data(sample_bytes):
    loader = PmdLoader(FileReadStream(io.BytesIO(sample_bytes + b'\xff')))
    model = loader.load()
    assert loader.has_more_data
    assert loader.has_english_info
    assert len(model.bones) == 8


def test_loader_is_single_use(box_bytes):
    loader = PmdLoader(FileReadStream(io.BytesIO(box_bytes)))
    loader.load()
    with pytest.raises(ValueError):
        loader.load()
